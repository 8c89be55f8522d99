"""
Example plugin module for Tinker.

Drop this file into a plugin directory (see plugin_dirs in main.conf) or make it
importable (plugin_modules). It registers a `login_message` step kind and a
`greeting` module that sets the login window message on every device.
"""

from tinker_provision.operations.base import Step
from tinker_provision.types import Module

LOGIN_DOMAIN = "/Library/Preferences/com.apple.loginwindow"


class LoginMessageStep(Step):
    kind = "login_message"
    privileged = True

    def __init__(self, spec: dict):
        super().__init__(spec)
        self.message = str(spec.get("message", "hello"))

    def describe(self) -> str:
        return "login window message"

    def check(self, context) -> bool:
        result = context.executor.run(
            ["defaults", "read", LOGIN_DOMAIN, "LoginwindowText"],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and result.stdout.strip() == context.render(self.message)

    def apply(self, context):
        message = context.render(self.message)
        context.executor.run(
            ["defaults", "write", LOGIN_DOMAIN, "LoginwindowText", message],
            privileged=True,
        )
        return f"message: {message}"


def register_steps(registry) -> None:
    registry["login_message"] = LoginMessageStep


def register_modules(registry, document, profile) -> None:
    step = LoginMessageStep({"message": "{{ .hostname }} is managed by tinker"})
    registry.register(Module(id="greeting", steps=(step,), description="Login window message"))
