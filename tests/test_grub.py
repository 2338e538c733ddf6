import pytest

from cryptboot.core.grub import GrubInstaller, GRUB_MODULES, X86_EFI_MODULES
from cryptboot.core.exceptions import BootloaderToolError, PreconditionNotMountedError
from cryptboot.utils.types import GrubSettings

from conftest import DummyResult, FakeRunner, make_controller


@pytest.fixture
def mounted(tmp_path, system):
    boot = tmp_path / "boot"
    (boot / "efi").mkdir(parents=True)
    controller = make_controller(system, boot_path=boot)
    controller.open()
    return controller


def test_modules_for_x86_64_target():
    installer = GrubInstaller(GrubSettings(modules=["luks2", "luks"]), FakeRunner())

    modules = installer.modules_for_target("x86_64-efi")

    assert modules[:len(GRUB_MODULES)] == GRUB_MODULES
    assert all(module in modules for module in X86_EFI_MODULES)
    assert modules[-1] == "luks2"
    assert modules.count("luks") == 1


def test_modules_for_arm_target():
    installer = GrubInstaller(GrubSettings(target="arm64-efi"), FakeRunner())

    modules = installer.modules_for_target("arm64-efi")

    assert "tpm" not in modules
    assert "cryptodisk" in modules


def test_install_runs_mkconfig_then_grub_install(mounted):
    runner = FakeRunner()

    GrubInstaller(GrubSettings(bootloader_id="arch"), runner).install(mounted)

    boot = mounted.boot.path
    assert (boot / "grub").is_dir()
    assert runner.commands[0] == ["grub-mkconfig", "-o", str(boot / "grub" / "grub.cfg")]
    install = runner.commands[1]
    assert install[0] == "grub-install"
    assert "--target=x86_64-efi" in install
    assert f"--efi-directory={boot / 'efi'}" in install
    assert "--bootloader-id=arch" in install
    assert "--disable-shim-lock" in install
    modules_arg = next(arg for arg in install if arg.startswith("--modules="))
    assert "cryptodisk" in modules_arg.split("=", 1)[1].split()


def test_install_requires_fully_mounted(tmp_path, system):
    controller = make_controller(system, boot_path=tmp_path / "boot")
    runner = FakeRunner()

    with pytest.raises(PreconditionNotMountedError):
        GrubInstaller(GrubSettings(), runner).install(controller)
    assert runner.commands == []


def test_install_tool_failure(mounted):
    runner = FakeRunner([(["grub-install"], DummyResult(1, stderr="efibootmgr failed"))])

    with pytest.raises(BootloaderToolError) as excinfo:
        GrubInstaller(GrubSettings(), runner).install(mounted)
    assert "efibootmgr failed" in str(excinfo.value)


def test_mkconfig_failure_stops_install(mounted):
    runner = FakeRunner([(["grub-mkconfig"], DummyResult(1, stderr="syntax error"))])

    with pytest.raises(BootloaderToolError):
        GrubInstaller(GrubSettings(), runner).install(mounted)
    assert not any(cmd[0] == "grub-install" for cmd in runner.commands)
