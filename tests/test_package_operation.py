import pytest

from tinker_provision.operations import package as pkg
from tinker_provision.operations.package import BrewPackageManager, PackageManager


class FakePackageManager(PackageManager):
    name = "fake"

    def __init__(self, installed: set[str]):
        self._installed = installed
        self.installed_calls: list[list[str]] = []
        self.removed_calls: list[list[str]] = []

    def install(self, executor, packages: list[str], *, cask: bool = False) -> None:
        self.installed_calls.append(packages)
        self._installed.update(packages)

    def remove(self, executor, packages: list[str], *, cask: bool = False) -> None:
        self.removed_calls.append(packages)
        for pkg_name in packages:
            self._installed.discard(pkg_name)

    def is_installed(self, executor, package: str, *, cask: bool = False) -> bool:
        return package in self._installed


@pytest.fixture(autouse=True)
def no_installed_brew(monkeypatch):
    monkeypatch.setattr(pkg, "HOMEBREW_PREFIXES", ())


@pytest.fixture
def fake_manager(monkeypatch):
    installed = {"git"}

    def create(cls, preferred):
        return FakePackageManager(installed)

    monkeypatch.setattr(pkg.PackageManagerFactory, "create", classmethod(create))
    return installed


def test_package_present_installs_missing(fake_manager, make_context):
    step = pkg.PackageStep({"packages": ["git", "htop"], "state": "present"})
    context = make_context()

    assert step.check(context) is False
    detail = step.apply(context)

    assert detail == "manager=fake installed=htop"
    assert "htop" in fake_manager
    assert step.check(context) is True


def test_package_absent_removes_installed(fake_manager, make_context):
    step = pkg.PackageStep({"packages": ["git"], "state": "absent"})
    context = make_context()

    step.apply(context)

    assert "git" not in fake_manager
    assert step.check(context) is True


def test_package_requires_names():
    with pytest.raises(ValueError):
        pkg.PackageStep({})


def test_only_homebrew_is_a_known_manager():
    with pytest.raises(ValueError, match="unknown package manager 'apt'"):
        pkg.PackageStep({"name": "ghostty", "cask": True, "manager": "apt"})
    assert pkg.PackageManagerFactory.names() == ("brew",)


def test_brew_manager_commands(make_context, fake_executor_cls):
    executor = fake_executor_cls(lambda cmd: (1, "", "") if cmd[:2] == ["brew", "list"] else (0, "", ""))
    step = pkg.PackageStep({"name": "font-maple-mono-nf", "cask": True})

    assert isinstance(step.manager, BrewPackageManager)
    assert step.requires_privilege is False
    step.apply(make_context(executor))

    assert executor.calls == [
        ["brew", "list", "--cask", "font-maple-mono-nf"],
        ["brew", "install", "--cask", "font-maple-mono-nf"],
    ]


def test_brew_bundle_renders_brewfile_path(tmp_path, make_context, fake_executor_cls):
    brewfile = tmp_path / "Brewfile.mac-studio"
    brewfile.write_text('brew "git"\n')
    executor = fake_executor_cls(lambda cmd: (1, "", "") if "check" in cmd else (0, "", ""))
    step = pkg.BrewBundleStep({"file": "Brewfile.{{ .device_type }}"})
    context = make_context(executor)

    assert step.check(context) is False
    step.apply(context)

    assert executor.calls[-1] == ["brew", "bundle", "install", "--file", str(brewfile), "--no-upgrade"]


def test_brew_bundle_missing_brewfile(tmp_path, make_context):
    step = pkg.BrewBundleStep({"file": "Brewfile.{{ .device_type }}"})
    with pytest.raises(FileNotFoundError):
        step.check(make_context())


def test_homebrew_check_uses_known_prefixes(tmp_path, make_context, monkeypatch):
    brew = tmp_path / "brew"
    monkeypatch.setattr(pkg, "HOMEBREW_PREFIXES", (str(brew),))
    step = pkg.HomebrewStep({})
    context = make_context()

    assert step.check(context) is False
    brew.write_text("#!/bin/sh\n")
    brew.chmod(0o755)
    assert step.check(context) is True
    assert step.requires_privilege is True


def test_brew_outside_path_is_used_by_its_full_path(tmp_path, make_context, fake_executor_cls, monkeypatch):
    brew = tmp_path / "opt" / "homebrew" / "bin" / "brew"
    brew.parent.mkdir(parents=True)
    brew.write_text("#!/bin/sh\n")
    brew.chmod(0o755)
    monkeypatch.setattr(pkg, "HOMEBREW_PREFIXES", (str(tmp_path / "usr" / "local" / "bin" / "brew"), str(brew)))
    (tmp_path / "Brewfile").write_text('brew "git"\n')
    executor = fake_executor_cls(lambda cmd: (1, "", "") if cmd[1] in ("list", "bundle") else (0, "", ""))
    context = make_context(executor)

    package = pkg.PackageStep({"name": "htop"})
    assert package.check(context) is False
    package.apply(context)
    bundle = pkg.BrewBundleStep({"file": "Brewfile"})
    assert bundle.check(context) is False

    assert {cmd[0] for cmd in executor.calls} == {str(brew)}
    assert [str(brew), "install", "htop"] in executor.calls


def test_brew_on_path_wins(make_context, fake_executor_cls):
    executor = fake_executor_cls(lambda cmd: (1, "", ""))
    executor.binaries["brew"] = "/usr/local/bin/brew"

    assert pkg.find_brew(executor) == "/usr/local/bin/brew"
    assert pkg.PackageStep({"name": "git"}).check(make_context(executor)) is False
    assert executor.calls == [["/usr/local/bin/brew", "list", "git"]]
