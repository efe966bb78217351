# onebot_adapter/config.py
# 适配器的配置模块，使用 tomlkit，并包含版本管理

import datetime
import shutil
import ssl
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import tomlkit
from tomlkit.items import Table

from .definitions import ConnectionMode
from .exceptions import ConfigError
from .logger import logger

# --- 路径定义 ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent
TEMPLATE_CONFIG_PATH = PROJECT_ROOT / "template" / "config_template.toml"
ACTUAL_CONFIG_PATH = PROJECT_ROOT / "config.toml"
BACKUP_DIR = PROJECT_ROOT / "config_backups"

ConfigSource = Union[Dict[str, Any], tomlkit.TOMLDocument]


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(item) for item in value]


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value or None


# --- 配置数据类 ---
class AdapterConfigData:
    config_version: str = "0.0.0"

    # [connection]
    mode: str = ConnectionMode.reverse
    urls: List[str] = []
    http_post_urls: List[str] = []
    use_http_post: bool = False
    access_token: Optional[str] = None
    reconnect_interval: float = 5.0  # 秒，0 表示断开后不重连

    # [server]
    host: str = "127.0.0.1"
    port: int = 8080
    path: str = "/onebot/v11/ws"
    cert_path: Optional[str] = None
    key_path: Optional[str] = None

    # [api]
    api_timeout: int = 30000  # 毫秒

    # [log]
    log_event: bool = True
    console_log_level: str = "INFO"
    file_log_level: str = "DEBUG"

    def __init__(self, data: Optional[ConfigSource] = None, **overrides: Any):
        # 从 data 中读取配置，如果键不存在，则使用类属性中定义的默认值
        data = data or {}
        self.config_version = str(data.get("config_version", self.config_version))

        connection = data.get("connection", {})
        self.mode = str(connection.get("mode", self.mode))
        self.urls = _str_list(connection.get("urls"))
        self.http_post_urls = _str_list(connection.get("http_post_urls"))
        self.use_http_post = bool(connection.get("use_http_post", self.use_http_post))
        self.access_token = _optional_str(connection.get("access_token"))
        self.reconnect_interval = float(connection.get("reconnect_interval", self.reconnect_interval))

        server = data.get("server", {})
        self.host = str(server.get("host", self.host))
        self.port = int(server.get("port", self.port))
        self.path = str(server.get("path", self.path))
        self.cert_path = _optional_str(server.get("cert_path"))
        self.key_path = _optional_str(server.get("key_path"))

        api = data.get("api", {})
        self.api_timeout = int(api.get("timeout", self.api_timeout))

        log = data.get("log", {})
        self.log_event = bool(log.get("log_event", self.log_event))
        self.console_log_level = str(log.get("console_level", self.console_log_level))
        self.file_log_level = str(log.get("file_level", self.file_log_level))

        # 代码里直接构造配置时用关键字参数覆盖
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise ConfigError(f"unknown config option: {key}")
            setattr(self, key, value)

    @property
    def api_timeout_seconds(self) -> float:
        return self.api_timeout / 1000.0

    @property
    def tls_enabled(self) -> bool:
        return bool(self.cert_path and self.key_path)

    def validate(self) -> None:
        """检查配置能不能用来启动，不能用时抛 ConfigError."""
        if self.mode not in (ConnectionMode.forward, ConnectionMode.reverse):
            raise ConfigError(f'unknown connection mode "{self.mode}", expected "forward" or "reverse"')

        if self.api_timeout <= 0:
            raise ConfigError("api timeout must be a positive number of milliseconds")

        if self.mode == ConnectionMode.forward:
            if not self.urls:
                raise ConfigError("forward mode requires at least one url to connect to")
            if self.use_http_post and not self.http_post_urls:
                raise ConfigError("forward mode with http post enabled requires at least one http post url")
            if self.use_http_post and len(self.urls) != len(self.http_post_urls):
                raise ConfigError(
                    "forward mode with http post enabled requires the same number of urls and http post urls"
                )
            if self.reconnect_interval < 0:
                raise ConfigError("reconnect interval must not be negative")
        else:
            if bool(self.cert_path) != bool(self.key_path):
                raise ConfigError("reverse mode with tls requires both cert path and key path to be set")
            if not 0 <= self.port <= 65535:
                raise ConfigError(f"invalid server port: {self.port}")
            if not self.path.startswith("/"):
                raise ConfigError(f'server path must start with "/": {self.path}')

    def ssl_context(self) -> Optional[ssl.SSLContext]:
        """反向模式下服务端的 TLS 配置，没配证书时返回 None."""
        if not self.tls_enabled:
            return None
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(self.cert_path, self.key_path)  # type: ignore[arg-type]
        except (OSError, ssl.SSLError) as e:
            raise ConfigError(f"failed to load tls certificate: {e}") from e
        return context

    def server_url(self) -> str:
        scheme = "wss" if self.tls_enabled else "ws"
        return f"{scheme}://{self.host}:{self.port}{self.path}"


# --- 配置文件的创建与升级 ---


def _merge_toml_data(new_data: Any, old_data: Any, prefix: str = "") -> Any:
    """把旧配置里的值填进新模板.

    以新模板的结构为准：模板里没有的旧键丢弃，类型对不上的保留模板值，表递归合并。
    config_version 始终用模板的。
    """
    for key in old_data:
        if not prefix and key == "config_version":
            continue
        name = f"{prefix}{key}"
        if key not in new_data:
            logger.info(f"  旧配置项 '{name}' 在新模板中不存在，已忽略。")
            continue

        old_item = old_data[key]
        new_item = new_data[key]
        if isinstance(old_item, Table) and isinstance(new_item, Table):
            _merge_toml_data(new_item, old_item, prefix=f"{name}.")
        elif isinstance(old_item, type(new_item)) or isinstance(new_item, type(old_item)):
            new_data[key] = old_item
            logger.debug(f"  合并值: {name} = {old_item}")
        else:
            logger.warning(
                f"  跳过合并: '{name}' 类型不匹配 (旧: {type(old_item).__name__}, 新: {type(new_item).__name__})。保留模板值。"
            )
    return new_data


def _backup(config_path: Path, backup_dir: Path, label: str) -> Optional[Path]:
    backup_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = backup_dir / f"{config_path.name}_{label}_{timestamp}.toml"
    try:
        shutil.copy2(config_path, backup_path)
    except OSError as e:
        logger.error(f"备份配置文件 {config_path} 失败: {e}")
        return None
    logger.info(f"已备份配置文件到: {backup_path}")
    return backup_path


def prepare_config_file(
    config_path: Path = ACTUAL_CONFIG_PATH,
    template_path: Path = TEMPLATE_CONFIG_PATH,
    backup_dir: Path = BACKUP_DIR,
) -> bool:
    """
    处理配置文件的存在性、版本检查和更新。
    返回 True 表示配置文件刚被创建或更新，需要用户检查后再启动。
    """
    if not template_path.exists():
        raise ConfigError(f"配置文件模板 {template_path} 未找到")

    template_doc = tomlkit.parse(template_path.read_text(encoding="utf-8"))
    expected_version = template_doc.get("config_version")
    if not expected_version:
        raise ConfigError(f"配置文件模板 {template_path} 中缺少 'config_version' 字段")
    expected_version = str(expected_version)

    if not config_path.exists():
        logger.warning(f"配置文件 {config_path} 不存在，将从模板创建。")
        shutil.copy2(template_path, config_path)
        return True

    try:
        actual_doc = tomlkit.parse(config_path.read_text(encoding="utf-8"))
    except tomlkit.exceptions.TOMLKitError as e:
        logger.error(f"解析现有配置文件 {config_path} 失败: {e}")
        _backup(config_path, backup_dir, "corrupted")
        logger.warning("将从模板重新创建配置文件。")
        shutil.copy2(template_path, config_path)
        return True

    actual_version = actual_doc.get("config_version")
    actual_version = str(actual_version) if actual_version else None
    if actual_version == expected_version:
        logger.debug(f"配置文件版本 ({actual_version}) 与模板一致，无需更新。")
        return False

    logger.warning(
        f"配置文件版本 ({actual_version or '未找到'}) 与模板版本 ({expected_version}) 不一致，将进行更新。"
    )
    _backup(config_path, backup_dir, f"backup_v{actual_version or 'unknown'}")
    logger.info("正在合并旧的配置值到新的配置模板...")
    updated_doc = _merge_toml_data(template_doc, actual_doc)
    config_path.write_text(tomlkit.dumps(updated_doc), encoding="utf-8")
    logger.info(f"配置文件已从版本 {actual_version or '未知'} 更新到版本 {expected_version}。")
    return True


def load_config(
    config_path: Path = ACTUAL_CONFIG_PATH,
    template_path: Path = TEMPLATE_CONFIG_PATH,
    backup_dir: Path = BACKUP_DIR,
) -> Tuple[AdapterConfigData, bool]:
    """加载配置，返回 (配置, 是否需要用户先检查配置文件)."""
    needs_review = prepare_config_file(config_path, template_path, backup_dir)
    try:
        document = tomlkit.parse(config_path.read_text(encoding="utf-8"))
        config = AdapterConfigData(document)
    except tomlkit.exceptions.TOMLKitError as e:
        raise ConfigError(f"解析配置文件 {config_path} 失败: {e}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(f"配置文件 {config_path} 中有格式不对的值: {e}") from e

    logger.info(f"适配器配置已从 {config_path} 加载。")
    logger.info(f"  - 配置版本: {config.config_version}")
    logger.info(f"  - 连接模式: {config.mode}")
    if config.mode == ConnectionMode.forward:
        logger.info(f"  - 连接地址: {', '.join(config.urls) or '未设置'}")
    else:
        logger.info(f"  - 监听地址: {config.server_url()}")
    logger.info(f"  - Access Token: {'已设置' if config.access_token else '未设置'}")
    return config, needs_review
