#!/usr/bin/env python3
"""Run the control plane with explicit args (avoids shell interpolation)."""
from __future__ import annotations

import argparse
from dataclasses import replace

import uvicorn

from idp_control_plane.app import PlatformSettings, create_app


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--reclamation", action=argparse.BooleanOptionalAction, default=None)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = PlatformSettings.from_env()
    if args.reclamation is not None:
        settings = replace(settings, reclamation_enabled=args.reclamation)
    app = create_app(settings)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
