"""Read context files or folders and format them for inclusion in a prompt."""

import logging
from pathlib import Path

import frontmatter

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".md", ".txt", ".pdf")


def read_context_file(file_path: Path) -> str | None:
    """Return the text of one context file, or None if it can't be used.

    Markdown frontmatter is stripped. PDFs are referenced, not extracted.
    """
    if not file_path.exists():
        logger.warning("Context file not found: %s", file_path)
        return None

    suffix = file_path.suffix.lower()
    if suffix == ".pdf":
        logger.warning("PDF content is not extracted: %s", file_path)
        return f"[PDF file: {file_path.name} - content not extracted]"

    try:
        if suffix == ".md":
            return frontmatter.load(str(file_path)).content
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read context file %s: %s", file_path, exc)
        return None


def read_context_folder(folder_path: Path) -> dict[str, str]:
    """Read every supported, non-hidden file in a folder (or a single file)."""
    results: dict[str, str] = {}

    if not folder_path.exists():
        logger.warning("Context path not found: %s", folder_path)
        return results

    if not folder_path.is_dir():
        content = read_context_file(folder_path)
        if content:
            results[folder_path.name] = content
        return results

    for file_path in sorted(folder_path.iterdir()):
        if file_path.name.startswith(".") or file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            continue
        if not file_path.is_file():
            continue
        content = read_context_file(file_path)
        if content:
            results[file_path.name] = content
    return results


def format_context_for_prompt(context_files: dict[str, str]) -> str:
    if not context_files:
        return ""
    parts = ["## Background Context", ""]
    for filename, content in context_files.items():
        parts += [f"### {filename}", "", content.strip(), ""]
    parts += ["---", "", ""]
    return "\n".join(parts)


def read_context(path: Path) -> str:
    """Context block for a file or folder path; empty string when nothing is readable."""
    return format_context_for_prompt(read_context_folder(path))
