"""Tests for DeploymentLauncher detached tasks."""
from __future__ import annotations

import asyncio
import logging

import pytest

from idp_control_plane.app.provisioning import DeploymentLauncher


@pytest.mark.asyncio
async def test_launch_returns_before_completion():
    launcher = DeploymentLauncher()
    gate = asyncio.Event()

    async def deploy():
        await gate.wait()
        return "done"

    task = launcher.launch("acme/p/s", deploy())
    assert launcher.pending == 1
    assert task.get_name() == "deploy:acme/p/s"

    gate.set()
    await launcher.drain()
    assert launcher.pending == 0
    assert task.result() == "done"


@pytest.mark.asyncio
async def test_failure_is_logged_not_raised(caplog):
    launcher = DeploymentLauncher()

    async def deploy():
        raise RuntimeError("deployment settings missing")

    with caplog.at_level(logging.ERROR, logger="idp_control_plane.app.provisioning.launcher"):
        launcher.launch("acme/p/s", deploy())
        await launcher.drain()

    assert launcher.pending == 0
    assert "deployment settings missing" in caplog.text


@pytest.mark.asyncio
async def test_aclose_cancels_outstanding():
    launcher = DeploymentLauncher()
    task = launcher.launch("acme/p/s", asyncio.sleep(10))

    await launcher.aclose()

    assert task.cancelled()
    assert launcher.pending == 0
