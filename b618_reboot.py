#!/usr/bin/env python3
# Command line tool for Huawei LTE routers (B618 and similar)
# Logs in through the router management API, then prints the signal
# statistics as JSON or reboots the router
import argparse
import json
import logging
import logging.handlers
import os
import sys
import time
from datetime import datetime
from pathlib import Path

import urllib3

from router_client import RouterClient, RouterClientError

COMMANDS = ('signal-stats', 'reboot')


def setup_logging(log_level='INFO', log_file=None, log_max_size=10*1024*1024, log_backup_count=5):
    """
    Setup logging with rotation, structured format, and multiple handlers.

    Console output goes to stderr so that stdout only carries command output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, logs to the console only)
        log_max_size: Maximum size of log file before rotation (bytes)
        log_backup_count: Number of backup log files to keep
    """
    logger = logging.getLogger('b618reboot')
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(funcName)s() | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=log_max_size,
            backupCount=log_backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

        # Structured copy of the log next to the text log
        json_log_file = str(log_path.with_suffix('.json'))
        json_handler = logging.handlers.RotatingFileHandler(
            json_log_file,
            maxBytes=log_max_size,
            backupCount=log_backup_count,
            encoding='utf-8'
        )
        json_handler.setLevel(logging.INFO)
        json_handler.setFormatter(JsonFormatter())
        logger.addHandler(json_handler)

    return logger


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
            'process_id': os.getpid()
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_entry['extra'] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


logger = logging.getLogger('b618reboot.cli')


def get_arguments(argv=None):
    """
    Parse command line arguments.

    Every connection option falls back to an environment variable.

    Returns:
        Parsed argument namespace
    """
    env_url = os.environ.get('ROUTER_URL', '')
    env_username = os.environ.get('ROUTER_USERNAME', '')
    env_password = os.environ.get('ROUTER_PASSWORD', '')
    env_noverify = os.environ.get('ROUTER_NOVERIFY', '').lower() in ('true', '1', 'yes')
    env_timeout = os.environ.get('ROUTER_TIMEOUT', '30')
    env_log_level = os.environ.get('LOG_LEVEL', 'INFO')
    env_log_file = os.environ.get('LOG_FILE', None)

    parser = argparse.ArgumentParser(
        description="Read signal statistics from or reboot Huawei LTE routers"
    )
    parser.add_argument(
        'command',
        choices=COMMANDS,
        help='signal-stats prints the signal parameters as JSON, reboot restarts the router'
    )
    parser.add_argument(
        '--url',
        default=env_url,
        help='Router URL, ip or name (http://xxx.xxx.xx.xxx), may include user:password@'
    )
    parser.add_argument(
        '--username',
        '-u',
        default=env_username,
        help='Username for the router account (Default from ROUTER_USERNAME)'
    )
    parser.add_argument(
        '--password',
        default=env_password,
        help='Password for the router account (Default from ROUTER_PASSWORD)'
    )
    parser.add_argument(
        '--noverify',
        '-n',
        action='store_true',
        default=env_noverify,
        help="Disable SSL certificate verification"
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=env_timeout,
        help=f'Per request timeout in seconds (Default: {env_timeout})'
    )
    parser.add_argument(
        '--dryrun',
        '-d',
        action='store_true',
        help="Logs in but doesn't reboot"
    )
    parser.add_argument(
        '--log-level',
        default=env_log_level,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help=f'Logging level (Default: {env_log_level})'
    )
    parser.add_argument(
        '--log-file',
        default=env_log_file,
        help='Path to log file (Default: console only)'
    )
    parser.add_argument(
        '--log-max-size',
        type=int,
        default=10*1024*1024,
        help='Maximum log file size in bytes before rotation (Default: 10MB)'
    )
    parser.add_argument(
        '--log-backup-count',
        type=int,
        default=5,
        help='Number of backup log files to keep (Default: 5)'
    )
    return parser.parse_args(argv)


def run(args):
    """
    Execute the requested command.

    Returns:
        Process exit status
    """
    if args.noverify:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    try:
        client = RouterClient(args.url, args.username, args.password,
                              timeout=args.timeout, verify=not args.noverify)
    except RouterClientError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    start_time = time.time()
    with client:
        try:
            client.login()

            if args.command == 'signal-stats':
                signal = client.get_signal_stats()
                print(json.dumps(signal.to_record()))
            elif args.dryrun:
                logger.info("Dry-run mode: login verified, skipping reboot command.")
            else:
                client.reboot()
                logger.info("Reboot command sent successfully.")
        except RouterClientError as e:
            duration = time.time() - start_time
            logger.error(f"{args.command} failed after {duration:.2f}s: {e}",
                         extra={'extra_data': {
                             'command': args.command,
                             'duration': duration,
                             'error': str(e),
                             'error_type': type(e).__name__
                         }})
            return 1

    return 0


def main(argv=None):
    args = get_arguments(argv)

    setup_logging(
        log_level=args.log_level,
        log_file=args.log_file,
        log_max_size=args.log_max_size,
        log_backup_count=args.log_backup_count
    )

    logger.debug(f"Starting {args.command}",
                 extra={'extra_data': {
                     'command': args.command,
                     'username': args.username,
                     'dryrun': args.dryrun,
                     'ssl_verify': not args.noverify,
                     'log_level': args.log_level,
                     'log_file': args.log_file
                 }})

    sys.exit(run(args))


if __name__ == '__main__':
    main()
