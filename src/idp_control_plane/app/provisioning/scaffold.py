"""Render a blueprint template into a local directory with the ``pulumi`` CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Protocol

from ..errors import ScaffoldError

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT_SECONDS = 120.0
DEFAULT_PROJECT_NAME = 'pulumi-project'
_MAX_STDERR_CHARS = 500


class TemplateRenderer(Protocol):
    """Materializes template ``template`` into ``target_dir``."""

    async def render(
        self, template: str, target_dir: Path, *, project_name: str, description: str,
    ) -> None: ...


class PulumiTemplateRenderer:
    """Runs ``pulumi new <template> --dir <target> ... --yes --force -g``.

    ``-g`` skips stack creation: the stack already exists remotely and the
    rendered files are only committed to the new repository.
    """

    def __init__(
        self,
        *,
        executable: str = 'pulumi',
        timeout_seconds: float = DEFAULT_RENDER_TIMEOUT_SECONDS,
    ) -> None:
        self._executable = executable
        self._timeout = timeout_seconds

    async def render(
        self, template: str, target_dir: Path, *, project_name: str, description: str,
    ) -> None:
        if not template:
            raise ScaffoldError('template name is required')
        binary = shutil.which(self._executable)
        if binary is None:
            raise ScaffoldError(f'{self._executable!r} executable not found on PATH')

        args = [
            binary, 'new', template,
            '--dir', str(target_dir),
            '--name', project_name or DEFAULT_PROJECT_NAME,
            '--description', description,
            '--yes', '--force', '-g',
        ]
        logger.info(
            'Rendering template %s into %s',
            template,
            target_dir,
            extra={'template': template},
        )
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(os.environ),
        )
        try:
            _, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise ScaffoldError(
                f'rendering template {template!r} timed out after {self._timeout:g}s',
            )

        if proc.returncode != 0:
            stderr = (stderr_b or b'').decode(errors='replace').strip()
            raise ScaffoldError(
                f'rendering template {template!r} failed with exit code '
                f'{proc.returncode}: {stderr[:_MAX_STDERR_CHARS]}',
            )
