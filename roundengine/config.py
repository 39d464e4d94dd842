from pydantic_settings import BaseSettings
import os


class Settings(BaseSettings):
    db_dsn: str = os.getenv("DB_DSN", "sqlite:///./data/roundengine.db")
    api_key: str | None = os.getenv("API_KEY")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # "game:minutes" pairs kept open by the scheduler
    streams: str = os.getenv("STREAMS", "wingo:1,wingo:3,wingo:5,wingo:10,numma:1,numma:3,numma:5")
    tick_seconds: float = float(os.getenv("TICK_SECONDS", 1.0))
    resolve_grace_seconds: float = float(os.getenv("RESOLVE_GRACE_SECONDS", 3))
    bet_cutoff_seconds: float = float(os.getenv("BET_CUTOFF_SECONDS", 0))
    resolution_policy: str = os.getenv("RESOLUTION_POLICY", "random")  # 'random' | 'lowest_payout'
    settle_retries: int = int(os.getenv("SETTLE_RETRIES", 3))

    color_multiplier: float = float(os.getenv("COLOR_MULTIPLIER", 2))
    dual_color_multiplier: float = float(os.getenv("DUAL_COLOR_MULTIPLIER", 1.5))
    violet_multiplier: float = float(os.getenv("VIOLET_MULTIPLIER", 4.5))
    number_multiplier: float = float(os.getenv("NUMBER_MULTIPLIER", 9))
    big_small_multiplier: float = float(os.getenv("BIG_SMALL_MULTIPLIER", 2))
    service_fee_rate: float = float(os.getenv("SERVICE_FEE_RATE", 0.0))
    min_bet: float = float(os.getenv("MIN_BET", 1))

    commission_trigger: str = os.getenv("COMMISSION_TRIGGER", "stake")  # 'stake' | 'loss' | 'deposit' | 'none'
    commission_max_depth: int = int(os.getenv("COMMISSION_MAX_DEPTH", 10))

    def stream_pairs(self) -> list[tuple[str, int]]:
        out = []
        for item in self.streams.split(","):
            item = item.strip()
            if not item:
                continue
            game, _, minutes = item.partition(":")
            out.append((game.strip().lower(), int(minutes)))
        return out


settings = Settings()
