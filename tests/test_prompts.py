from __future__ import annotations

from host_init.core.enums import DistroFamily
from host_init.core.models import HostDefaults, HostFacts
from host_init.services.prompts import ChoicePrompter


UBUNTU = HostFacts(os_name="Ubuntu", family=DistroFamily.UBUNTU, version_id="22.04", version_codename="jammy")


def _scripted(answers: list[str]):
    queue = list(answers)

    def _input(prompt: str) -> str:
        del prompt
        return queue.pop(0)

    return _input, queue


def test_collect_walks_all_questions() -> None:
    input_fn, remaining = _scripted(
        ["3", "Asia/Shanghai", "1", "y", "y", "Bad Name", "alice", "y", "y", "80", "2222", "n", ""]
    )
    passwords = iter(["pw", "pw"])
    output: list[str] = []
    prompter = ChoicePrompter(
        facts=UBUNTU,
        defaults=HostDefaults(),
        input_fn=input_fn,
        password_fn=lambda prompt: next(passwords),
        read_block_fn=lambda: "ssh-ed25519 AAAAC3 alice@laptop\n",
        output_fn=output.append,
    )

    choices = prompter.collect()

    assert remaining == []
    assert choices.timezone_mode == "manual"
    assert choices.timezone == "Asia/Shanghai"
    assert choices.mirror == "ustc"
    assert choices.remove_snap
    assert choices.username == "alice"
    assert choices.password is not None and choices.password.get_secret_value() == "pw"
    assert choices.ssh_public_key == "ssh-ed25519 AAAAC3 alice@laptop"
    assert choices.ssh_port == 2222
    assert not choices.install_docker
    assert not choices.install_git
    assert any("Invalid username format" in line for line in output)
    assert any("Invalid port number" in line for line in output)


def test_collect_skips_preset_answers() -> None:
    def _fail(prompt: str) -> str:
        raise AssertionError(f"unexpected prompt: {prompt}")

    prompter = ChoicePrompter(facts=UBUNTU, defaults=HostDefaults(), input_fn=_fail, output_fn=lambda line: None)
    choices = prompter.collect(
        {
            "timezone_mode": "keep",
            "mirror": None,
            "remove_snap": False,
            "create_user": False,
            "install_docker": True,
            "install_git": False,
        }
    )

    assert choices.install_docker
    assert not choices.create_user


def test_default_answers_keep_everything() -> None:
    input_fn, _ = _scripted(["", "", "", "", "", ""])
    prompter = ChoicePrompter(facts=UBUNTU, defaults=HostDefaults(), input_fn=input_fn, output_fn=lambda line: None)

    choices = prompter.collect()

    assert choices.timezone_mode == "keep"
    assert choices.mirror is None
    assert not choices.remove_snap
    assert not choices.create_user
    assert choices.ssh_port is None
