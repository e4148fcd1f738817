"""Thin kubectl wrapper.

kubectl is treated as a black box: manifests go in on stdin, and a
non-zero exit is reported with its stderr.
"""

from __future__ import annotations

import subprocess
from typing import Callable

from ..errors import TransientInfrastructureError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 300


class Kubectl:
    """Run kubectl against one cluster context."""

    def __init__(
        self,
        context: str | None = None,
        kubeconfig: str | None = None,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
        binary: str = "kubectl",
    ):
        """Initialize wrapper.

        Args:
            context: kubeconfig context, e.g. kind-kinder
            kubeconfig: Explicit kubeconfig file
            runner: subprocess.run compatible callable; defaults to subprocess.run
            binary: kubectl executable
        """
        self.context = context
        self.kubeconfig = kubeconfig
        self.runner = runner
        self.binary = binary

    def command(self, *args: str) -> list[str]:
        prefix: list[str] = []
        if self.kubeconfig:
            prefix += ["--kubeconfig", self.kubeconfig]
        if self.context:
            prefix += ["--context", self.context]
        return [self.binary, *prefix, *args]

    def run(
        self,
        *args: str,
        input: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> str:
        """Run kubectl and return stdout.

        Raises:
            TransientInfrastructureError: kubectl missing, timed out or failed.
        """
        cmd = self.command(*args)
        logger.debug("running kubectl", args=list(args))
        try:
            runner = self.runner or subprocess.run
            result = runner(cmd, input=input, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as e:
            raise TransientInfrastructureError(
                message=f"{self.binary} not found. Is kubectl installed?"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise TransientInfrastructureError(
                message=f"kubectl {' '.join(args[:2])} timed out after {timeout}s"
            ) from e
        if result.returncode != 0:
            raise TransientInfrastructureError(
                message=f"kubectl {' '.join(args[:2])} failed: {result.stderr.strip()}",
                details={"returncode": result.returncode, "stderr": result.stderr},
            )
        return result.stdout

    def succeeds(self, *args: str, timeout: int = 30) -> bool:
        try:
            self.run(*args, timeout=timeout)
        except TransientInfrastructureError:
            return False
        return True

    def apply(self, manifest: str) -> str:
        return self.run("apply", "-f", "-", input=manifest)

    def apply_url(self, url: str, namespace: str | None = None) -> str:
        args = ["apply", "-f", url]
        if namespace:
            args += ["-n", namespace]
        return self.run(*args)

    def patch(self, kind: str, name: str, namespace: str, patch: str) -> str:
        return self.run("patch", kind, name, "-n", namespace, "--type=strategic", "-p", patch)

    def delete(self, *args: str) -> str:
        return self.run("delete", *args, "--ignore-not-found")
