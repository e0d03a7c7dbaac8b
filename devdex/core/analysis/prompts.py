"""Prompt templates for project analysis and the Oracle chat.

Two templates:
1. project_analysis_prompt - Extract structured metadata from project files
2. oracle_system_prompt - Ground the chat assistant in a fixed file context
"""

import json
from typing import List

from ..constants import MAX_FILE_CHARS
from .models import ANALYSIS_RESPONSE_SCHEMA, FileContext


def format_file_block(name: str, content: str) -> str:
    return f"\n--- START OF FILE: {name} ---\n{content}\n--- END OF FILE ---\n"


def build_file_context(files: List[FileContext], max_file_chars: int = MAX_FILE_CHARS) -> str:
    """Concatenate file contents, hard-cutting each file at max_file_chars.

    The cut is a plain character slice, not sentence aware; anything past
    the limit is dropped from the prompt.
    """
    return "".join(
        format_file_block(f.name, f.content[:max_file_chars]) for f in files
    )


def build_project_analysis_prompt(file_context: str) -> str:
    """Build the structured-metadata extraction prompt.

    Args:
        file_context: Output of build_file_context()
    """
    schema = json.dumps(ANALYSIS_RESPONSE_SCHEMA, indent=2)

    return f"""You are a senior technical lead and DevOps engineer (DevDex System).
Analyze the following project files.

Your goal is to extract ACTIONABLE metadata to make this project easy to resume or deploy.

CRITICAL INSTRUCTION FOR "run_commands":
- Normalize all scripts into full execution commands.
- If package.json has "dev": "next dev", output "npm run dev" (or pnpm/yarn if inferred).
- If Makefile has "test:", output "make test".
- If Foundry project, output "forge test".
- Do NOT output just "dev" or "start". Output the full shell command.

1. **Run Commands**: Look for 'scripts' in package.json, Makefile targets, or README instructions.
2. **Tech Stack**: precise detection from package.json, go.mod or requirements.txt.
3. **Deploy Status**: Look for 'vercel.app' links, contract addresses, or 'localhost' mentions.
   'production' if live URLs are found, 'local' if only setup steps.

## OUTPUT FORMAT
Respond with a single JSON object matching this schema. No prose before or after it.
{schema}

## INPUT FILES
{file_context}
"""


def build_oracle_system_prompt(context_window: str) -> str:
    return f"""You are the "Oracle" of this specific software project.
You have read the project files provided below.
Answer the user's questions strictly based on these files.

Style:
- Be concise and technical.
- If asked for code, provide it.
- If asked "How do I run this?", look for scripts/Makefiles.
- If the answer is not in the files, say "Data not found in source files."

PROJECT FILES CONTEXT:
{context_window or "No context provided"}
"""
