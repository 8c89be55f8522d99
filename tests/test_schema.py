from tinker_provision.schema import validate


def test_valid_document_has_no_problems() -> None:
    data = {
        "schema_version": 1,
        "power": {"settings": {"sleep": 0, "displaysleep": 30}},
        "preferences": {
            "defaults": [
                {"domain": "com.apple.dock", "key": "autohide", "value": True},
                {"domain": "/Library/Preferences/com.apple.loginwindow", "key": "GuestEnabled", "value": False, "privileged": True},
            ]
        },
        "modules": {
            "xcode-tools": {
                "description": "Command line tools",
                "depends_on": ["homebrew"],
                "steps": [{"type": "exec", "name": "clt", "command": "xcode-select --install", "creates": "/Library/Developer/CommandLineTools"}],
            }
        },
    }

    assert validate(data) == []


def test_unsupported_schema_version() -> None:
    problems = validate({"schema_version": 7})
    assert problems == ["schema_version: unsupported version 7 (supported: 1)"]


def test_bool_is_not_an_integer() -> None:
    problems = validate({"schema_version": 1, "power": {"settings": {"sleep": True}}})
    assert problems == ["power.settings.sleep: expected int"]


def test_table_list_entries_are_checked() -> None:
    problems = validate(
        {
            "schema_version": 1,
            "dotfiles": {"templates": [{"source": "zshrc.tmpl"}, "gitconfig"]},
            "modules": {"broken": {"steps": [{"name": "no-type"}]}},
        }
    )

    assert "dotfiles.templates[0].destination: required key missing" in problems
    assert "dotfiles.templates[1]: expected a table" in problems
    assert "modules.broken.steps[0].type: required key missing" in problems


def test_package_manager_must_be_homebrew() -> None:
    problems = validate({"schema_version": 1, "packages": {"formulae": ["git"], "manager": "apt"}})
    assert problems == ["packages.manager: expected one of brew"]


def test_security_switches_are_booleans() -> None:
    data = {"schema_version": 1, "security": {"firewall": True, "gatekeeper": "yes", "filevault": True}}
    assert validate(data) == ["security.gatekeeper: expected bool"]
