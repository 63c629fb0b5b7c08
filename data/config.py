import os

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

DEFAULT_TEMPLATE = "{title}_{publishTime}_{downloadTimestamp}"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


config = {
    "naming": {
        "enabled": _env_bool("XHS_NAMING_ENABLED"),
        "template": os.getenv("XHS_NAMING_TEMPLATE", DEFAULT_TEMPLATE),
        "settings_file": os.getenv("XHS_SETTINGS_FILE", "xhs_settings.json"),
    },
    "http": {
        "user_agent": os.getenv("XHS_USER_AGENT", DEFAULT_USER_AGENT),
        "connect_timeout": float(os.getenv("XHS_CONNECT_TIMEOUT", "10")),
        "read_timeout": float(os.getenv("XHS_READ_TIMEOUT", "30")),
        "resolve_timeout": float(os.getenv("XHS_RESOLVE_TIMEOUT", "15")),
        "page_timeout": float(os.getenv("XHS_PAGE_TIMEOUT", "45")),
        "download_timeout": float(os.getenv("XHS_DOWNLOAD_TIMEOUT", "90")),
        "proxy_file": os.getenv("XHS_PROXY_FILE", ""),
        "proxy_include_host": _env_bool("XHS_PROXY_INCLUDE_HOST"),
    },
    "retry": {
        "url_resolve_max_retries": int(os.getenv("XHS_RESOLVE_MAX_RETRIES", "2")),
        "page_max_retries": int(os.getenv("XHS_PAGE_MAX_RETRIES", "2")),
        "download_max_retries": int(os.getenv("XHS_DOWNLOAD_MAX_RETRIES", "3")),
    },
    "download": {
        "temp_dir": os.getenv("XHS_TEMP_DIR", ""),
        "library_dir": os.getenv("XHS_LIBRARY_DIR", "downloads"),
        "max_concurrent": int(os.getenv("XHS_MAX_CONCURRENT_DOWNLOADS", "1")),
    },
    "logs": {
        "level": os.getenv("LOG_LEVEL", "INFO").upper(),
    },
}
