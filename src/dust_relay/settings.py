from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dust_api_key: str = ""
    dust_workspace_id: str = ""
    dust_agent_id: str = ""
    dust_agent_name: str = "SystemsThinking"
    dust_workspace_name: str = "WorkwithAI_Launchpad"
    dust_domain: str = "https://dust.tt"

    # Sent upstream as the message context of every posted message
    dust_timezone: str = "UTC"
    dust_username: str = ""
    dust_fullname: str = ""

    mcp_name: str = "Dust MCP Relay"
    mcp_host: str = "127.0.0.1"
    mcp_port: int = 5001
    mcp_timeout: float = 30

    poll_interval: float = 1.0
    poll_max_attempts: int = 60

    log_dir: str = "logs"

    def masked_api_key(self) -> str:
        if not self.dust_api_key:
            return "not set"
        return f"****{self.dust_api_key[-4:]}"

    def agent_descriptor(self) -> dict:
        return {
            "id": self.dust_agent_id,
            "name": self.dust_agent_name,
            "description": f"Agent from the {self.dust_workspace_name} workspace",
            "capabilities": {"chat": True, "streaming": True},
        }


settings = Settings()
