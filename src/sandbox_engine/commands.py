# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from dataclasses import dataclass

from sandbox_engine.errors import ErrorCode, SandboxError
from sandbox_engine.models import Language

SCRIPT_NAMES: dict[Language, str] = {
    Language.BASH: "script.sh",
    Language.PYTHON: "script.py",
    Language.JAVASCRIPT: "script.js",
    Language.TYPESCRIPT: "script.ts",
}

INTERPRETERS: dict[Language, tuple[str, ...]] = {
    Language.BASH: ("/bin/sh",),
    Language.PYTHON: ("python3",),
    Language.JAVASCRIPT: ("node",),
    Language.TYPESCRIPT: ("npx", "tsx"),
}

BASE_PATH = "/usr/local/bin:/usr/bin:/bin"


@dataclass(frozen=True)
class CommandSpec:
    argv: list[str]
    script_name: str
    script_path: str
    entrypoint: list[str] | None = None


def normalize_language(language: Language | str) -> Language:
    """Map a language identifier (or alias) to a Language.

    Raises:
        SandboxError: UNSUPPORTED_LANGUAGE for anything not in the table.
    """
    try:
        return Language(language)
    except ValueError:
        raise SandboxError(f"Unsupported language: {language}", ErrorCode.UNSUPPORTED_LANGUAGE) from None


def resolve_command(
    language: Language | str,
    working_dir: str,
    interpreters: dict[Language, tuple[str, ...]] | None = None,
) -> CommandSpec:
    """Resolve the interpreter invocation for the injected script of `language`."""
    lang = normalize_language(language)
    table = interpreters or INTERPRETERS

    script_name = SCRIPT_NAMES[lang]
    script_path = f"{working_dir.rstrip('/')}/{script_name}"
    return CommandSpec(
        argv=[*table[lang], script_path],
        script_name=script_name,
        script_path=script_path,
    )


def build_env(env: dict[str, str] | None = None) -> list[str]:
    """Build the KEY=VALUE environment list for a unit."""
    entries = [f"PATH={BASE_PATH}"]
    if env:
        entries.extend(f"{key}={value}" for key, value in env.items())
    return entries
