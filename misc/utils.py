import logging
import sys
from sys import exc_info
from traceback import format_exception


def error_catch(e):
    error_type, error_instance, tb = exc_info()
    tb_str = format_exception(error_type, error_instance, tb)
    error_message = "".join(tb_str)
    return error_message


def read_share_text(args: list) -> str:
    if args:
        return ' '.join(args)
    if sys.stdin.isatty():
        logging.info('Paste share text, then press Ctrl-D')
    return sys.stdin.read()
