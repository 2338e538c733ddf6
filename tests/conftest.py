import subprocess
from pathlib import Path

import pytest

from cryptboot.core.exceptions import (
    DeviceAlreadyOpenError, WrongPassphraseError, DeviceNotFoundError, DeviceBusyError,
    DeviceNotOpenError, AlreadyMountedError, SourceMissingError, NotMountedError, MountBusyError
)
from cryptboot.core.partition import PartitionController
from cryptboot.utils.types import EncryptedVolume, MountTarget


class FakeSystem:
    """In-memory device-mapper table and mount table."""

    def __init__(self, passphrase: str = "secret") -> None:
        self.passphrase = passphrase
        self.device_present = True
        self.mapped: set[str] = set()
        self.mounted: dict[Path, Path] = {}
        self.busy: set[Path] = set()
        self.calls: list[tuple] = []


class FakeDeviceMapper:
    def __init__(self, system: FakeSystem) -> None:
        self.system = system

    def is_open(self, volume):
        return volume.mapper_name in self.system.mapped

    def open(self, volume, passphrase):
        self.system.calls.append(("open", volume.mapper_name))
        if not self.system.device_present:
            raise DeviceNotFoundError(str(volume.device_path))
        if volume.mapper_name in self.system.mapped:
            raise DeviceAlreadyOpenError(volume.mapper_name)
        if passphrase != self.system.passphrase:
            raise WrongPassphraseError(str(volume.device_path))
        self.system.mapped.add(volume.mapper_name)

    def close(self, volume):
        self.system.calls.append(("close", volume.mapper_name))
        if volume.mapper_name not in self.system.mapped:
            raise DeviceNotOpenError(volume.mapper_name)
        if volume.mapper_path in self.system.mounted.values():
            raise DeviceBusyError(volume.mapper_name)
        self.system.mapped.remove(volume.mapper_name)


class FakeMountPoint:
    def __init__(self, system: FakeSystem) -> None:
        self.system = system

    def _source_exists(self, source: Path) -> bool:
        if source.parent == Path("/dev/mapper"):
            return source.name in self.system.mapped
        return True

    def is_mounted(self, target):
        return target.path in self.system.mounted

    def mount(self, target):
        self.system.calls.append(("mount", target.path))
        if target.path in self.system.mounted:
            raise AlreadyMountedError(str(target.path))
        if not self._source_exists(target.source):
            raise SourceMissingError(str(target.source))
        self.system.mounted[target.path] = target.source

    def unmount(self, target):
        self.system.calls.append(("unmount", target.path))
        if target.path not in self.system.mounted:
            raise NotMountedError(str(target.path))
        nested = [p for p in self.system.mounted if target.path in p.parents]
        if target.path in self.system.busy or nested:
            raise MountBusyError(str(target.path))
        del self.system.mounted[target.path]


def make_controller(system: FakeSystem, boot_path: Path = Path("/boot"),
                    efi_path: Path = None, passphrase: str = "secret"):
    efi_path = efi_path or boot_path / "efi"
    volume = EncryptedVolume(device="/dev/sda2", mapper_name="cryptboot-boot")
    prompts = []

    def provider():
        prompts.append(1)
        return passphrase

    controller = PartitionController(
        volume,
        MountTarget(source=volume.mapper_path, path=boot_path),
        MountTarget(source=Path("/dev/sda1"), path=efi_path),
        FakeDeviceMapper(system),
        FakeMountPoint(system),
        provider,
    )
    controller.prompts = prompts
    return controller


@pytest.fixture
def system():
    return FakeSystem()


@pytest.fixture
def controller(system):
    return make_controller(system)


class DummyResult:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakeRunner:
    """Records commands and answers from a list of (prefix, result) rules."""

    def __init__(self, rules=None) -> None:
        self.rules = rules or []
        self.commands: list[list[str]] = []
        self.inputs: list = []
        self.colored_output = False

    def run(self, cmd, check=True, **kwargs):
        self.commands.append(list(cmd))
        self.inputs.append(kwargs.get("input"))
        for prefix, result in self.rules:
            if cmd[:len(prefix)] == prefix:
                if callable(result):
                    result = result(cmd)
                break
        else:
            result = DummyResult()
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)
        return result


@pytest.fixture
def runner():
    return FakeRunner()
