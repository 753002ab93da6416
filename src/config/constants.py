"""
默认常量定义

各组件的默认参数集中在这里，环境变量可在 settings 中覆盖。
时间单位统一为秒。
"""


class CacheDefaults:
    """生成结果缓存默认值"""

    TTL_SECONDS = 60 * 60  # 1 小时
    MAX_SIZE = 100
    SWEEP_INTERVAL_SECONDS = 10 * 60  # 每 10 分钟清理一次过期条目


class CapabilityDefaults:
    """外部能力探测默认值"""

    PROBE_FRESHNESS_SECONDS = 5 * 60
    PROBE_TIMEOUT_SECONDS = 5.0


class ConverterDefaults:
    """Draw.io CLI 转换默认值"""

    CLI_PATH = "drawio"
    CONVERT_TIMEOUT_SECONDS = 30.0


class LLMDefaults:
    """模型调用默认值"""

    BASE_URL = "https://api.anthropic.com"
    API_VERSION = "2023-06-01"
    MODEL = "claude-3-haiku-20240307"  # 响应速度优先
    MAX_TOKENS = 3000
    TEMPERATURE = 0.2
    TIMEOUT_SECONDS = 25.0


class RateLimitDefaults:
    """入站请求限流默认值（固定窗口）"""

    GLOBAL_MAX_REQUESTS = 20
    GLOBAL_WINDOW_SECONDS = 60
    API_MAX_REQUESTS = 50
    API_WINDOW_SECONDS = 15 * 60
    MAX_MEMORY_ENTRIES = 10000


class RequestDefaults:
    """请求处理默认值"""

    # 含 PNG 渲染在内的整体上限
    DEADLINE_SECONDS = 90.0
    SLOW_REQUEST_SECONDS = 5.0
    MAX_PROMPT_LENGTH = 2000


class StorageDefaults:
    """临时文件存储默认值"""

    FILE_TTL_SECONDS = 60 * 60
    SWEEP_INTERVAL_SECONDS = 5 * 60
    FILE_CACHE_MAX_AGE = 3600


class ClientDefaults:
    """客户端重试与超时默认值"""

    MAX_RETRIES = 2
    BASE_DELAY_SECONDS = 1.0
    DEFAULT_TIMEOUT_SECONDS = 30.0
