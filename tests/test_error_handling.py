#!/usr/bin/env python3
"""
Test error handling scenarios for normalize.py.
"""

import logging
import os
import shutil
import stat
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, mock_open, patch

# Add parent directory to path to import normalize module
sys.path.insert(0, str(Path(__file__).parent.parent))
import normalize  # pylint: disable=wrong-import-position
from eol_attributes import LineEnding  # pylint: disable=wrong-import-position

# Disable logging for tests
normalize.logger.setLevel(logging.CRITICAL)


class TestErrorHandling(unittest.TestCase):
    def setUp(self) -> None:
        # Create a temporary directory
        self.test_dir = tempfile.mkdtemp()

        self.test_file = os.path.join(self.test_dir, "test.txt")
        with open(self.test_file, "wb") as f:
            f.write(b"Test content\r\n")

    def tearDown(self) -> None:
        shutil.rmtree(self.test_dir)

    def test_apply_line_ending_nonexistent_file(self) -> None:
        """Test processing a file that doesn't exist."""
        result = normalize.apply_line_ending("/nonexistent/file.txt", LineEnding.LF)
        self.assertFalse(result)

    def test_apply_line_ending_not_accessible(self) -> None:
        """Test processing a file with permission issues."""
        with patch("normalize.is_binary_file", return_value=False):
            with patch("os.access", return_value=False):
                result = normalize.apply_line_ending(self.test_file, LineEnding.LF)
                self.assertFalse(result)

    def test_file_not_writable(self) -> None:
        """Test a read-only file is not rewritten."""
        os.chmod(self.test_file, stat.S_IREAD)
        try:
            with patch("os.access", side_effect=lambda p, mode: mode != os.W_OK):
                result = normalize.apply_line_ending(self.test_file, LineEnding.LF)
            self.assertFalse(result)
        finally:
            os.chmod(self.test_file, stat.S_IREAD | stat.S_IWRITE)

    def test_empty_file_processing(self) -> None:
        """Test processing an empty file."""
        empty_file = os.path.join(self.test_dir, "empty.txt")
        with open(empty_file, "w", encoding="utf-8"):
            pass

        self.assertFalse(normalize.apply_line_ending(empty_file, LineEnding.LF))

    def test_write_error(self) -> None:
        """Test processing a file where writing fails."""
        with patch(
            "builtins.open",
            side_effect=[
                mock_open(read_data="test\r\ncontent\r\n").return_value,
                OSError("Write error"),
            ],
        ):
            with patch("normalize.is_binary_file", return_value=False):
                result = normalize.apply_line_ending(self.test_file, LineEnding.LF)
                self.assertFalse(result)

        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"Test content\r\n")

    def test_backup_creation_error(self) -> None:
        """Test processing when backup creation fails."""
        with patch("shutil.copy2", side_effect=OSError("Backup error")):
            result = normalize.apply_line_ending(self.test_file, LineEnding.LF)
            self.assertTrue(result)  # Should still succeed despite backup failure

        with open(self.test_file, "rb") as f:
            self.assertEqual(f.read(), b"Test content\n")

    def test_backup_restore_failure(self) -> None:
        """Test backup restoration failure scenario."""
        mock_file = MagicMock()
        mock_file.read.return_value = "test content\r\n"
        mock_file.__enter__.return_value = mock_file
        mock_file.__exit__.return_value = None

        copy2_call_count = 0

        def copy2_side_effect(*args: Any, **kwargs: Any) -> None:
            nonlocal copy2_call_count
            copy2_call_count += 1
            if copy2_call_count == 2:  # Second call is restore
                raise OSError("Restore failed")

        with patch("shutil.copy2", side_effect=copy2_side_effect):
            with patch("builtins.open") as mock_open_func:
                mock_open_func.side_effect = [mock_file, OSError("Write failed")]
                with patch("normalize.is_binary_file", return_value=False):
                    with patch("os.path.exists", return_value=True):
                        with patch("os.path.getsize", return_value=10):
                            with patch("os.access", return_value=True):
                                result = normalize.apply_line_ending(
                                    self.test_file, LineEnding.LF
                                )
                                self.assertFalse(result)
        self.assertEqual(copy2_call_count, 2)

    def test_latin1_read_failure(self) -> None:
        """Test a failure in the latin-1 fallback read."""

        def track_open(filename: str, mode: str = "r", **kwargs: Any) -> object:
            if kwargs.get("encoding") == "utf-8":
                raise UnicodeDecodeError("utf-8", b"test", 0, 1, "invalid start byte")
            raise OSError("Simulated latin-1 read error")

        with patch("normalize.is_binary_file", return_value=False):
            with patch("builtins.open", side_effect=track_open):
                result = normalize.apply_line_ending(self.test_file, LineEnding.LF)
                self.assertFalse(result)

    def test_permission_error(self) -> None:
        """Test PermissionError handling in apply_line_ending."""
        with patch("os.path.exists", side_effect=PermissionError("Permission denied")):
            self.assertFalse(normalize.apply_line_ending("dummy_path", LineEnding.LF))

    def test_general_exception(self) -> None:
        """Test general exception handling in apply_line_ending."""
        with patch("os.path.exists", side_effect=RuntimeError("Unexpected error")):
            self.assertFalse(normalize.apply_line_ending("dummy_path", LineEnding.LF))

    def test_is_binary_file_os_error(self) -> None:
        """Test binary file detection with OS error."""
        with patch("os.path.getsize", side_effect=OSError("Size error")):
            self.assertTrue(normalize.is_binary_file(self.test_file))

    def test_unreadable_attributes_are_skipped(self) -> None:
        """Test an undecodable .gitattributes counts as missing."""
        sub = os.path.join(self.test_dir, "sub")
        os.makedirs(sub)
        target = os.path.join(sub, "a.txt")
        with open(target, "wb") as f:
            f.write(b"a\r\nb\r\n")
        with open(os.path.join(sub, ".gitattributes"), "wb") as f:
            f.write(b"\xff\xfe*.txt eol=crlf")
        with open(os.path.join(self.test_dir, ".gitattributes"), "w", encoding="utf-8") as f:
            f.write("*.txt eol=lf\n")

        self.assertTrue(normalize.handle_saved_file(target, self.test_dir))
        with open(target, "rb") as f:
            self.assertEqual(f.read(), b"a\nb\n")

    def test_parallel_processing_exception_handling(self) -> None:
        """Test exception handling in parallel processing."""
        test_files = []
        for i in range(3):
            test_file = os.path.join(self.test_dir, f"parallel_test_{i}.txt")
            with open(test_file, "w", encoding="utf-8") as f:
                f.write("test content\n")
            test_files.append(test_file)

        def mock_handle(file_path: str, *args: Any, **kwargs: Any) -> bool:
            if "parallel_test_1" in file_path:
                raise RuntimeError("Handler error")
            return True

        with patch("normalize.handle_saved_file", side_effect=mock_handle):
            result = normalize.process_files_parallel(
                test_files, self.test_dir, max_workers=2
            )
            # Should handle exceptions and return successful count (2 out of 3)
            self.assertEqual(result, 2)

    def test_debug_logging_exception(self) -> None:
        """Test debug logging with an invalid root."""
        original_level = normalize.logger.level
        normalize.logger.setLevel(logging.DEBUG)

        try:
            with patch("sys.argv", ["normalize.py", "/invalid/path"]):
                self.assertEqual(normalize.main(), 1)
        finally:
            normalize.logger.setLevel(original_level)


if __name__ == "__main__":
    unittest.main()
