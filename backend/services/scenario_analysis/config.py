from typing import List, Dict, Any, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.kafka_utils import KafkaConfig
from shared.database import get_database_url


def _parse_csv(v, upper: bool = False) -> List[str]:
    # Handle None or empty values
    if v is None or v == "":
        return ["*"]

    if isinstance(v, str):
        if v.strip() == "*" or not v.strip():
            return ["*"]
        items = [item.strip() for item in v.split(',') if item.strip()]
    elif isinstance(v, list):
        items = [str(item).strip() for item in v if str(item).strip()]
    else:
        return ["*"]

    return [item.upper() for item in items] if upper else items


class ScenarioAnalysisSettings(BaseSettings):
    """scenario analysis service configuration settings"""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="SCENARIO_ANALYSIS_"  # Environment variables prefixed with SERVICE_NAME_
    )
    
    # Service identity
    service_name: str = "scenario-analysis-service"
    version: str = "0.1.0"
    
    # Job store: "memory" keeps terminal snapshots in-process, "database" uses SQLAlchemy
    job_store_backend: str = "memory"
    database_url_override: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_pre_ping: bool = True
    database_pool_recycle: int = 3600  # 1 hour
    
    # Kafka status events are optional
    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = KafkaConfig.BOOTSTRAP_SERVERS
    analysis_status_topic: str = KafkaConfig.ANALYSIS_STATUS_TOPIC
    analysis_results_topic: str = KafkaConfig.ANALYSIS_RESULTS_TOPIC
    error_events_topic: str = KafkaConfig.ERROR_EVENTS_TOPIC
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8007
    api_workers: int = 1
    
    # CORS settings (use Union to handle different input types)
    cors_origins: Union[List[str], str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: Union[List[str], str] = ["*"]
    cors_allow_headers: Union[List[str], str] = ["*"]
    
    # Logging
    log_level: str = "INFO"
    
    # Worker pool
    worker_count: int = 4
    max_queue_size: int = 100
    job_timeout_seconds: float = 60.0
    store_retry_attempts: int = 3
    
    # Models
    impact_seed: int = 42
    impact_variation: float = 0.1
    allow_net_negative_carbon: bool = False
    optimization_candidates: int = 5
    
    # Health check settings
    kafka_health_check_enabled: bool = True
    database_health_check_enabled: bool = True
        
    @field_validator('cors_origins', 'cors_allow_headers', mode='before')
    @classmethod
    def parse_cors_list(cls, v):
        return _parse_csv(v)
    
    @field_validator('cors_allow_methods', mode='before')
    @classmethod
    def parse_cors_methods(cls, v):
        return _parse_csv(v, upper=True)
    
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Invalid log level. Must be one of: {valid_levels}')
        return v.upper()

    @field_validator('job_store_backend')
    @classmethod
    def validate_job_store_backend(cls, v):
        if v.lower() not in ('memory', 'database'):
            raise ValueError("job_store_backend must be 'memory' or 'database'")
        return v.lower()

    @field_validator('worker_count', 'max_queue_size', 'optimization_candidates')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v
    
    @property
    def database_url(self) -> str:
        """Get database URL using shared utility"""
        return self.database_url_override or get_database_url("scenario_analysis")
    
    @property
    def database_engine_config(self) -> Dict[str, Any]:
        """Get database engine configuration"""
        if self.database_url.startswith("sqlite"):
            return {"connect_args": {"check_same_thread": False}}
        return {
            "pool_size": self.database_pool_size,
            "max_overflow": self.database_max_overflow,
            "pool_pre_ping": self.database_pool_pre_ping,
            "pool_recycle": self.database_pool_recycle,
        }
    
    def get_topic_config(self) -> Dict[str, str]:
        """Get all topic configurations"""
        return {
            "status": self.analysis_status_topic,
            "results": self.analysis_results_topic,
            "error": self.error_events_topic,
        }


# Global settings instance
settings = ScenarioAnalysisSettings()
