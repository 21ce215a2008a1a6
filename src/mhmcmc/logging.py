"""Custom Logging.

This module provides extensions of Python's logging capabilities for run and debug logs of sampler
runs. The run log is a table with one row per epoch of a multi-chain run, the debug log contains
per-chain information at every epoch boundary. The more elaborate logging routines take `Statistic`
objects, which makes their evaluation and formatted output more convenient.

Classes:
    LoggerSettings: Data class storing settings for the logger
    Statistic: Basic statistics object containing information for logging
    SamplerLogger: Logger for the MCMC sampler
    DebugFileHandler: Custom file handler for debug logging
"""

import logging
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np


# ==================================================================================================
@dataclass
class LoggerSettings:
    """Data class storing settings for the logger.

    Attributes:
        do_printing (bool): Decides if the default logger prints to the console, default is True
        logfile_path (Path): File to log run statistics to, default is None
        debugfile_path (Path): File to log debug statistics to, default is None
        write_mode (str): Write mode for the log files (append, overwrite), default is 'w'
    """

    do_printing: bool = True
    logfile_path: Path = None
    debugfile_path: Path = None
    write_mode: str = "w"


# ==================================================================================================
class Statistic:
    """Basic statistics object containing information for logging.

    Every statistics object has a string identifier and a format string for the value it stores. The
    value attribute is not accessed directly, but through getter and setter methods.

    Attributes:
        str_id (str): Identifier for the statistic
        str_format (str): Format string for the value

    Methods:
        set_value: Set the value of the statistic
        get_value: Get the value of the statistic
    """

    def __init__(self, str_id: str, str_format: str) -> None:
        """Constructor of the statistic.

        Args:
            str_id (str): Identifier for the statistic
            str_format (str): Format string for the value
        """
        self.str_id = str_id
        self.str_format = str_format
        self._value: Any = None

    def set_value(self, value: Any) -> None:
        """Set the value of the statistic."""
        assert value is None or isinstance(
            value, (int, float, np.integer, np.floating, np.ndarray)
        ), "Unsupported type for value"
        self._value = value

    def get_value(self) -> Any:
        """Get the value of the statistic."""
        return self._value


# ==================================================================================================
class SamplerLogger:
    """Logger for the MCMC sampler.

    This custom logger wraps the standard Python logger, adding some convenience methods for
    logging on different levels to different files and the console. Handlers are set up anew for
    every logger object, so that the settings of an earlier run do not leak into the next one.

    Methods:
        log_run_statistics: Log run statistics
        log_debug_statistics: Log debug statistics
        log_header: Log the header of the run statistics table
        log_debug_new_epoch: Log the start of a new epoch in the debug log
        info: Log an info message to the run logger
        warning: Log a warning to the run logger
        debug: Log a debug message to the debug logger
        exception: Log an exception to all loggers
        close: Detach and close all handlers
    """

    _debug_header_width = 80

    # ----------------------------------------------------------------------------------------------
    def __init__(self, logger_settings: LoggerSettings) -> None:
        """Constructor of the logger.

        Initializes the run and debug log handles, depending on the user settings.

        Args:
            logger_settings (LoggerSettings): User settings
        """
        self._logfile_path = logger_settings.logfile_path
        self._debugfile_path = logger_settings.debugfile_path
        self._pylogger = logging.getLogger(__name__)
        self._pylogger.setLevel(logging.DEBUG)
        self._pylogger.propagate = False
        self.close()
        formatter = logging.Formatter("%(message)s")

        if logger_settings.do_printing:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(formatter)
            self._pylogger.addHandler(console_handler)

        if self._logfile_path is not None:
            self._logfile_path = Path(self._logfile_path)
            os.makedirs(self._logfile_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(self._logfile_path, mode=logger_settings.write_mode)
            file_handler.setFormatter(formatter)
            file_handler.setLevel(logging.INFO)
            self._pylogger.addHandler(file_handler)

        if self._debugfile_path is not None:
            self._debugfile_path = Path(self._debugfile_path)
            os.makedirs(self._debugfile_path.parent, exist_ok=True)
            debug_handler = DebugFileHandler(
                self._debugfile_path, mode=logger_settings.write_mode
            )
            debug_handler.setFormatter(formatter)
            debug_handler.setLevel(logging.DEBUG)
            self._pylogger.addHandler(debug_handler)

        if not self._pylogger.handlers:
            self._pylogger.addHandler(logging.NullHandler())

    # ----------------------------------------------------------------------------------------------
    def log_run_statistics(self, statistics: dict[str, Statistic]) -> None:
        """Log statistics into run log table.

        Args:
            statistics (dict[str, Statistic]): Run statistics object to log
        """
        output_str = ""
        for statistic in statistics.values():
            value_str = self._process_value_str(statistic.get_value(), statistic.str_format)
            output_str += f"{value_str}| "
        self.info(output_str)

    # ----------------------------------------------------------------------------------------------
    def log_debug_statistics(self, info: str, statistics: dict[str, Statistic]) -> None:
        """Log statistics into debug file.

        Args:
            info (str): Event to log statistics for
            statistics (dict[str, Statistic]): Statistics to log
        """
        if self._debugfile_path is None:
            return
        output_str = ""
        for statistic in statistics.values():
            value_str = self._process_value_str(statistic.get_value(), statistic.str_format)
            output_str += f"{statistic.str_id}: {value_str}| "

        info_str = f"[{info}]"
        output_str = f"{info_str:15} {output_str}"
        self.debug(output_str)

    # ----------------------------------------------------------------------------------------------
    def log_header(self, statistics: dict[str, Statistic]) -> None:
        """Print out the header for the run statistics table.

        Args:
            statistics (dict[str, Statistic]): Statistics to print header for
        """
        log_header_str = ""
        for statistic in statistics.values():
            log_header_str += f"{statistic.str_id}| "
        self.info(log_header_str)
        self.info("-" * (len(log_header_str) - 1))

    # ----------------------------------------------------------------------------------------------
    def log_debug_new_epoch(self, epoch: int) -> None:
        """Log divider into debug file, indicating a new epoch.

        Args:
            epoch (int): Number of the new epoch
        """
        if self._debugfile_path is not None:
            output_str = f" Epoch {epoch} ".center(self._debug_header_width, "=")
            self.debug(f"\n{output_str}\n")

    # ----------------------------------------------------------------------------------------------
    def info(self, message: str) -> None:
        """Wrapper for Python logger info call.

        Args:
            message (str): Info message to log
        """
        self._pylogger.info(message)

    # ----------------------------------------------------------------------------------------------
    def warning(self, message: str) -> None:
        """Wrapper for Python logger warning call.

        Args:
            message (str): Warning message to log
        """
        self._pylogger.warning(message)

    # ----------------------------------------------------------------------------------------------
    def debug(self, message: str) -> None:
        """Wrapper for Python logger debug call.

        Args:
            message (str): Debug message to log
        """
        self._pylogger.debug(message)

    # ----------------------------------------------------------------------------------------------
    def exception(self, message: str | BaseException) -> None:
        """Wrapper for Python logger exception call.

        Args:
            message (str | BaseException): Exception message to log
        """
        self._pylogger.exception(message)

    # ----------------------------------------------------------------------------------------------
    def close(self) -> None:
        """Detach and close all handlers of the underlying Python logger."""
        for handler in list(self._pylogger.handlers):
            self._pylogger.removeHandler(handler)
            handler.close()

    # ----------------------------------------------------------------------------------------------
    def _process_value_str(self, value: Any, str_format: str) -> str:
        """Format a numerical value as string, given a suitable format.

        If the provided value is `None`, it is formatted as `np.nan`. If the value is iterable,
        all values are concatenated as comma-separated list, each with the provided format.

        Args:
            value (Any): Value to format as string
            str_format (str): format to use

        Raises:
            TypeError: If the value is of an unsupported type

        Returns:
            str: Value as formatted string
        """
        if isinstance(value, Iterable):
            value_str = [f"{val:{str_format}}" for val in value]
            value_str = f"({','.join(value_str)})"
        elif value is None:
            value_str = f"{np.nan:{str_format}}"
        elif isinstance(value, (int, float, np.integer, np.floating)):
            value_str = f"{value:{str_format}}"
        else:
            raise TypeError(f"Unsupported type for value: {type(value)}")

        return value_str


# ==================================================================================================
class DebugFileHandler(logging.FileHandler):
    """Custom file handler for Logger.

    This file handler only transfers messages on the `DEBUG` level of python logging.
    """

    def __init__(
        self, filename: Path, mode: str = "a", encoding: str = None, delay: bool = False
    ) -> None:
        """Constructor of the file handler.

        Args:
            filename (Path): File to log to
            mode (str, optional): Write mode for log messages. Defaults to "a".
            encoding (str, optional): Special encoding for messages. Defaults to None.
            delay (bool, optional): Determines if file opening is deferred until first `emit` call.
                Defaults to False.
        """
        super().__init__(filename, mode, encoding, delay)

    def emit(self, record: logging.LogRecord) -> None:
        """Transfer a log message.

        Args:
            record (logging.LogRecord): Log message object
        """
        if record.levelno == logging.DEBUG:
            super().emit(record)
