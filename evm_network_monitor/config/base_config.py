import yaml
import os
from typing import Dict, Any, Optional

CONFIG_ENV_VAR = "EVM_MONITOR_CONFIG"


def _resolve_config_path(config_path: Optional[str] = None) -> str:
    """
    解析配置文件路径

    优先级: 显式参数 > 环境变量 EVM_MONITOR_CONFIG > 包目录下的 config.yml
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR) or "config.yml"

    # 如果是相对路径且当前目录下不存在，则相对于包根目录
    if not os.path.isabs(config_path) and not os.path.exists(config_path):
        current_dir = os.path.dirname(os.path.abspath(__file__))
        package_root = os.path.dirname(current_dir)
        config_path = os.path.join(package_root, config_path)
    return config_path


def _load_config(config_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    内部函数：加载并解析 YAML 配置文件。

    Args:
        config_path: 配置文件路径

    Returns:
        配置字典或 None（如果加载失败）
    """
    config_path = _resolve_config_path(config_path)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
        if config_data is not None and not isinstance(config_data, dict):
            print(f"Warning: Config file {config_path} is not a mapping. Using default configuration.")
            return None
        return config_data
    except FileNotFoundError:
        print(f"Warning: Config file not found at {config_path}. Using default configuration.")
        return None
    except yaml.YAMLError as exc:
        print(f"Error parsing YAML file: {exc}. Using default configuration.")
        return None


# 在模块加载时执行配置加载和解析
_loaded_config = _load_config()
_active_chain = _loaded_config.get('active_chain', 'local') if _loaded_config else 'local'

# 全局变量，用于存储当前活跃链的配置
ConfigMap: Dict[str, Dict[str, Any]] = _loaded_config.get('chains', {}) if _loaded_config else {}
ActiveChainName: str = _active_chain
ActiveConfig: Dict[str, Any] = ConfigMap.get(_active_chain, {}) if ConfigMap else {}

# 监控配置
MonitorSettings: Dict[str, Any] = _loaded_config.get('monitor', {}) if _loaded_config else {}

# 存储配置
StorageConfig: Dict[str, Any] = _loaded_config.get('storage', {}) if _loaded_config else {}

# 日志配置
LoggingConfig: Dict[str, Any] = _loaded_config.get('logging', {}) if _loaded_config else {}

# HTTP 接口配置
ApiConfig: Dict[str, Any] = _loaded_config.get('api', {}) if _loaded_config else {}


def reload_config(config_path: str) -> Dict[str, Any]:
    """
    从指定路径重新加载配置并刷新模块级变量

    供命令行 --config 参数使用，必须在创建 MonitorConfig 之前调用。

    Returns:
        加载后的完整配置字典（加载失败时为空字典）
    """
    global _loaded_config, _active_chain, ActiveChainName

    loaded = _load_config(config_path) or {}
    _loaded_config = loaded
    _active_chain = loaded.get('active_chain', 'local')
    ActiveChainName = _active_chain

    # 原地更新，保证已导入这些字典的模块看到新值
    ConfigMap.clear()
    ConfigMap.update(loaded.get('chains', {}))
    ActiveConfig.clear()
    ActiveConfig.update(ConfigMap.get(_active_chain, {}))
    for target, section in ((MonitorSettings, 'monitor'), (StorageConfig, 'storage'),
                            (LoggingConfig, 'logging'), (ApiConfig, 'api')):
        target.clear()
        target.update(loaded.get(section, {}))
    return loaded


if __name__ == "__main__":
    print("\n--- ConfigMap (所有链的配置) ---")
    for chain_name, config in ConfigMap.items():
        print(f"Chain: {chain_name}")
        for key, value in config.items():
            print(f"  {key}: {value}")

    print(f"--- ActiveConfig ({ActiveChainName}) ---")
    for key, value in ActiveConfig.items():
        print(f"  {key}: {value}")
