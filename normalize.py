#!/usr/bin/env python3
"""
EolKeeper

Applies the line endings declared in a project's .gitattributes files to
saved text files.
"""

import argparse
import concurrent.futures
import logging
import os
import shutil
import sys
import threading
import time
from typing import List, Optional, Set, Tuple

from tqdm import tqdm

from eol_attributes import (
    CONFIG_FILE,
    ConfigParseError,
    LineEnding,
    RuleSet,
    relative_directory,
    resolve_for_file,
)

# Define version
__version__ = "1.0.0"


# Set up logging with thread-safe handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(), logging.FileHandler("eolkeeper.log", mode="a")],
)
logger = logging.getLogger("EolKeeper")
# Add a thread lock for logging
log_lock = threading.Lock()

DEFAULT_IGNORE_DIRS: List[str] = [
    ".git",
    ".github",
    "__pycache__",
    "node_modules",
    "venv",
    ".venv",
]

BINARY_EXTENSIONS: Set[str] = {
    ".bin", ".exe", ".dll", ".so", ".dylib", ".obj", ".o", ".a", ".lib",
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico",
    ".zip", ".tar", ".gz", ".7z", ".pdf", ".docx", ".xlsx",
    ".class", ".pyc", ".mp3", ".mp4",
}


def is_binary_file(
    file_path: str,
) -> bool:  # pylint: disable=too-many-return-statements
    """
    Check if a file is binary by examining its content.
    Uses multiple heuristics to improve accuracy.
    """
    try:
        # Check file size first - empty files are not binary
        if os.path.getsize(file_path) == 0:
            return False

        ext: str = os.path.splitext(file_path)[1].lower()
        if ext in BINARY_EXTENSIONS:
            return True

        with open(file_path, "rb") as f:
            chunk: bytes = f.read(8192)

        if not chunk:
            return False

        if b"\x00" in chunk:
            return True

        if chunk.startswith(
            (b"\x89PNG", b"GIF8", b"\xff\xd8\xff", b"%PDF", b"PK\x03\x04")
        ):
            return True

        # Share of bytes that never show up in text
        text_characters: bytearray = bytearray(
            {7, 8, 9, 10, 12, 13, 27} | set(range(0x20, 0x100)) - {0x7F}
        )
        non_text: bytes = chunk.translate(None, bytes(text_characters))
        return float(len(non_text)) / len(chunk) > 0.2
    except Exception as e:  # pylint: disable=broad-exception-caught
        with log_lock:
            logger.error("Error checking if file is binary %s: %s", file_path, str(e))
        return True  # Assume binary on error for safety


def translate_line_endings(text: str, line_ending: LineEnding) -> str:
    """Replace every CRLF, CR and LF in ``text`` with the directive's terminator."""
    normalized: str = text.replace("\r\n", "\n").replace("\r", "\n")
    terminator: str = line_ending.terminator
    if terminator == "\n":
        return normalized
    return normalized.replace("\n", terminator)


def apply_line_ending(  # pylint: disable=too-many-return-statements,too-many-branches
    file_path: str, line_ending: LineEnding
) -> bool:
    """Rewrite a file with the given line endings. True if the file changed."""
    try:
        if not os.path.exists(file_path):
            with log_lock:
                logger.error("File not found: %s", file_path)
            return False

        if os.path.getsize(file_path) == 0:
            with log_lock:
                logger.debug("Skipping empty file: %s", file_path)
            return False

        if is_binary_file(file_path):
            with log_lock:
                logger.debug("Skipping binary file: %s", file_path)
            return False

        if not os.access(file_path, os.R_OK):
            with log_lock:
                logger.error("File is not readable: %s", file_path)
            return False

        if not os.access(file_path, os.W_OK):
            with log_lock:
                logger.error("File is not writable: %s", file_path)
            return False

        content: str
        encoding_used: str
        try:
            with open(file_path, "r", newline="", encoding="utf-8") as f:
                content = f.read()
            encoding_used = "utf-8"
        except UnicodeDecodeError:
            # latin-1 decodes any byte sequence
            with log_lock:
                logger.warning(
                    "UTF-8 decoding failed for %s, falling back to latin-1", file_path
                )
            with open(file_path, "r", newline="", encoding="latin-1") as f:
                content = f.read()
            encoding_used = "latin-1"

        modified_content: str = translate_line_endings(content, line_ending)

        if content == modified_content:
            with log_lock:
                logger.debug("No changes needed for file: %s", file_path)
            return False

        temp_backup = file_path + ".bak"
        try:
            try:
                shutil.copy2(file_path, temp_backup)
            except Exception as e:  # pylint: disable=broad-exception-caught
                with log_lock:
                    logger.warning(
                        "Could not create backup of %s: %s", file_path, str(e)
                    )

            with open(file_path, "w", newline="", encoding=encoding_used) as f:
                f.write(modified_content)

            if os.path.exists(temp_backup):
                os.remove(temp_backup)

            with log_lock:
                logger.info(
                    "Saved %s with line endings: %s", file_path, line_ending.value
                )
            return True
        except Exception as e:  # pylint: disable=broad-exception-caught
            if os.path.exists(temp_backup):
                try:
                    shutil.copy2(temp_backup, file_path)
                    os.remove(temp_backup)
                    with log_lock:
                        logger.info(
                            "Restored original file from backup after write error: %s",
                            file_path,
                        )
                except Exception as restore_err:  # pylint: disable=broad-exception-caught
                    with log_lock:
                        logger.error(
                            "Failed to restore from backup for %s: %s",
                            file_path,
                            str(restore_err),
                        )

            with log_lock:
                logger.error("Error writing to %s: %s", file_path, str(e))
            return False
    except PermissionError as e:
        with log_lock:
            logger.error("Permission denied accessing %s: %s", file_path, str(e))
        return False
    except Exception as e:  # pylint: disable=broad-exception-caught
        with log_lock:
            logger.error("Error processing %s: %s", file_path, str(e))
        return False


def handle_saved_file(
    file_path: str,
    project_root: str,
    enabled: bool = True,
    fallback_rules: Optional[RuleSet] = None,
) -> bool:
    """
    React to a saved file: resolve its line ending and rewrite it if needed.

    Never raises for attribute file problems; the file is left as it is and
    the problem is logged.
    """
    if not enabled:
        return False

    full_path: str = os.path.abspath(file_path)
    if relative_directory(project_root, full_path) is None:
        with log_lock:
            logger.debug("Skipping file outside project %s: %s", project_root, full_path)
        return False

    try:
        line_ending: LineEnding = resolve_for_file(
            full_path, project_root, fallback_rules=fallback_rules
        )
    except ConfigParseError as e:
        with log_lock:
            logger.error("Could not resolve line endings for %s: %s", full_path, str(e))
        return False

    return apply_line_ending(full_path, line_ending)


def parse_pattern_option(value: str) -> Tuple[str, str]:
    """Parse a ``GLOB=lf|crlf`` command line value."""
    glob, sep, eol = value.rpartition("=")
    eol = eol.strip().lower()
    glob = glob.strip()
    if not sep or not glob or eol not in (LineEnding.LF.value, LineEnding.CRLF.value):
        raise argparse.ArgumentTypeError(
            f"invalid pattern '{value}', expected GLOB=lf or GLOB=crlf"
        )
    return glob, eol


def find_files(
    root_dir: str,
    ignore_dirs: Optional[List[str]] = None,
) -> List[str]:
    """Find all files below ``root_dir``, skipping ignored directories."""
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS

    all_files: List[str] = []
    ignore_dirs_set: Set[str] = set(ignore_dirs)

    for root, dirs, files in os.walk(root_dir):
        dirs[:] = [d for d in dirs if d not in ignore_dirs_set]
        for filename in files:
            if filename == CONFIG_FILE:
                continue
            all_files.append(os.path.join(root, filename))

    return all_files


def process_files_parallel(  # pylint: disable=too-many-locals
    files: List[str],
    project_root: str,
    fallback_rules: Optional[RuleSet] = None,
    max_workers: Optional[int] = None,
) -> int:
    """Handle files in parallel using ThreadPoolExecutor."""
    processed_count: int = 0
    error_count: int = 0
    skipped_count: int = 0

    if not files:
        return 0

    if max_workers is None:
        cpu_count: Optional[int] = os.cpu_count()
        max_workers = min((cpu_count or 2) * 2, 32, len(files))
    else:
        max_workers = min(max_workers, 32, len(files))

    with log_lock:
        logger.debug(
            "Using %d worker threads for processing %d files", max_workers, len(files)
        )

    # Batches keep the number of pending futures bounded
    batch_size = 1000
    for i in range(0, len(files), batch_size):
        batch_files = files[i : i + batch_size]

        with tqdm(
            total=len(batch_files),
            desc=f"Processing files (batch {i//batch_size + 1})",
            unit="file",
        ) as pbar:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers
            ) as executor:
                future_to_file = {
                    executor.submit(
                        handle_saved_file,
                        file_path,
                        project_root,
                        True,
                        fallback_rules,
                    ): file_path
                    for file_path in batch_files
                }

                for future in concurrent.futures.as_completed(future_to_file):
                    file_path = future_to_file[future]
                    try:
                        if future.result():
                            processed_count += 1
                        else:
                            skipped_count += 1
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        error_count += 1
                        with log_lock:
                            logger.error(
                                "Unhandled error processing %s: %s", file_path, str(e)
                            )
                    finally:
                        pbar.update(1)

    with log_lock:
        if error_count > 0:
            logger.warning("Encountered errors while processing %d files", error_count)
        logger.info(
            "Processed: %d, Skipped: %d, Errors: %d",
            processed_count,
            skipped_count,
            error_count,
        )

    return processed_count


def format_duration(execution_time: float) -> str:
    if execution_time < 60:
        return f"{execution_time:.2f} seconds"
    if execution_time < 3600:
        minutes = int(execution_time // 60)
        seconds = execution_time % 60
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds:.2f} seconds"
    hours = int(execution_time // 3600)
    minutes = int((execution_time % 3600) // 60)
    seconds = execution_time % 60
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds:.2f} seconds"
    )


def create_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply .gitattributes eol settings to text files"
    )
    parser.add_argument(
        "root_dir",
        nargs="?",
        default=None,
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "files",
        nargs="*",
        default=[],
        help="Saved files to process (default: every file in the project)",
    )
    parser.add_argument(
        "--pattern",
        dest="patterns",
        action="append",
        type=parse_pattern_option,
        default=[],
        metavar="GLOB=EOL",
        help="Line ending for files matching GLOB when no .gitattributes "
        "rules are found (repeatable, EOL is lf or crlf)",
    )
    parser.add_argument(
        "--disable",
        action="store_true",
        help="Do not touch any file",
    )
    parser.add_argument(
        "--ignore-dirs",
        nargs="+",
        default=[],
        help="Directories to ignore when sweeping the project "
        "(default: .git, .github, __pycache__, node_modules, venv, .venv)",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads for parallel processing "
        "(default: auto-detect based on CPU count)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"EolKeeper v{__version__}",
        help="Show program version and exit",
    )
    return parser


def main() -> int:  # pylint: disable=too-many-branches
    try:
        logger.info("EolKeeper v%s - .gitattributes line endings", __version__)

        args = create_arg_parser().parse_args()

        if args.verbose:
            logger.setLevel(logging.DEBUG)

        if args.disable:
            logger.info("Line ending normalization is disabled.")
            return 0

        root_dir: str = args.root_dir if args.root_dir else os.getcwd()
        if not os.path.isdir(root_dir):
            logger.error("Error: '%s' is not a valid directory.", root_dir)
            return 1
        root_dir = os.path.abspath(root_dir)

        fallback_rules: RuleSet = dict(args.patterns)

        if args.workers is not None and args.workers <= 0:
            logger.warning(
                "Invalid worker count (%d), using auto-detection instead", args.workers
            )
            args.workers = None

        start_time: float = time.time()

        files: List[str]
        if args.files:
            files = [os.path.abspath(f) for f in args.files]
        else:
            ignore_dirs: List[str] = (
                args.ignore_dirs if args.ignore_dirs else DEFAULT_IGNORE_DIRS
            )
            logger.info("Searching for files in %s", root_dir)
            logger.info("Ignoring directories: %s", ", ".join(ignore_dirs))
            files = find_files(root_dir, ignore_dirs)

        if not files:
            logger.warning("No files found.")
            return 0

        logger.info("Found %d files to process.", len(files))

        processed_count: int = process_files_parallel(
            files,
            root_dir,
            fallback_rules=fallback_rules,
            max_workers=args.workers,
        )

        logger.info(
            "Done! Updated %d of %d files in %s.",
            processed_count,
            len(files),
            format_duration(time.time() - start_time),
        )
        return 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.level <= logging.DEBUG:
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
