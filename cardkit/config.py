"""
配置加载

优先级（后者覆盖前者）：
  1. 内置默认值 DEFAULT_CONFIG
  2. cardkit.yaml（当前目录，或 $CARDKIT_CONFIG 指定的路径）
  3. 环境变量（.env 会先被 python-dotenv 读入）
"""

import copy
import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

log = logging.getLogger("cardkit.config")

CONFIG_FILE = "cardkit.yaml"

DEFAULT_CONFIG = {
    "server": {
        "host": "127.0.0.1",
        "port": 3000,
    },
    "site_url": "",
    "redis_url": "",
    "views_db": "data/views.db",
    "templates_dir": "data/card-templates",
    "universal_css": "public/card/universal-card.css",
    "screenshot": {
        "width": 1080,
        "height": 1440,
        "scale": 2,
        "format": "png",
        "padding": 24,
        "timeout": 30000,  # 毫秒
        "default_path": "/card/ipo",
        "jpeg_quality": 92,
    },
    "log_level": "INFO",
}

# 环境变量 → 配置路径
ENV_OVERRIDES = {
    "REDIS_URL": ("redis_url",),
    "CARDKIT_HOST": ("server", "host"),
    "CARDKIT_PORT": ("server", "port"),
    "CARDKIT_SITE_URL": ("site_url",),
    "CARDKIT_LOG_LEVEL": ("log_level",),
}


def merge_dict(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = merge_dict(base_value, value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        log.warning(f"配置文件读取失败，使用默认值: {path} ({e})")
        return {}
    if not isinstance(data, dict):
        log.warning(f"配置文件格式不对（顶层应为 mapping），忽略: {path}")
        return {}
    return data


def _apply_env(config: dict) -> dict:
    for env_name, keys in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        node = config
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        if keys[-1] == "port":
            try:
                value = int(value)
            except ValueError:
                log.warning(f"{env_name}={value!r} 不是合法端口，忽略")
                continue
        node[keys[-1]] = value
    return config


def load_config(path=None) -> dict:
    """加载配置，返回合并后的 dict。配置文件不存在不算错误。"""
    load_dotenv()
    config = copy.deepcopy(DEFAULT_CONFIG)

    config_path = Path(path or os.environ.get("CARDKIT_CONFIG") or CONFIG_FILE)
    if config_path.exists():
        config = merge_dict(config, _read_yaml(config_path))
        log.debug(f"已加载配置: {config_path}")
    elif path:
        log.warning(f"指定的配置文件不存在: {config_path}")

    return _apply_env(config)
