from pydantic import BaseModel

from shared.helper.HelperConfig import HelperConfig


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string", "number", "bool", and "list".
        default (str | int | bool | list | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | bool | list | None = None


class RAGSettings(BaseModel):
    """Tunables of the ingestion and answering pipeline.

    Attributes:
        chunk_size:              Characters per chunk window.
        chunk_overlap:           Characters shared by consecutive windows.
        top_k:                   Number of chunks retrieved per question.
        min_score:               Hits scoring at or below this similarity are not used as context.
        context_max_chars:       Character budget of the assembled context.
        history_window:          Number of most recent messages replayed to the model.
        summary_max_chunks:      Upper bound of chunks fed into a summary.
        session_title_max_chars: Display length of a derived session title.
        embed_batch_size:        Chunks per embedding request during ingestion.
        stream_queue_size:       Capacity of the token channel between producer and transport.
    """

    chunk_size: int = 1000
    chunk_overlap: int = 200
    top_k: int = 5
    min_score: float = 0.0
    context_max_chars: int = 12000
    history_window: int = 6
    summary_max_chunks: int = 40
    session_title_max_chars: int = 30
    embed_batch_size: int = 16
    stream_queue_size: int = 64

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "RAGSettings":
        """Build the settings from environment variables, falling back to the defaults above."""
        defaults = cls()
        return cls(
            chunk_size=int(helper_config.get_number_val("CHUNK_SIZE", default=defaults.chunk_size, minimum=1)),
            chunk_overlap=int(helper_config.get_number_val("CHUNK_OVERLAP", default=defaults.chunk_overlap, minimum=0)),
            top_k=int(helper_config.get_number_val("RETRIEVAL_TOP_K", default=defaults.top_k, minimum=1)),
            min_score=float(helper_config.get_number_val("RETRIEVAL_MIN_SCORE", default=defaults.min_score)),
            context_max_chars=int(helper_config.get_number_val("CONTEXT_MAX_CHARS", default=defaults.context_max_chars, minimum=1)),
            history_window=int(helper_config.get_number_val("HISTORY_WINDOW", default=defaults.history_window, minimum=0)),
            summary_max_chunks=int(helper_config.get_number_val("SUMMARY_MAX_CHUNKS", default=defaults.summary_max_chunks, minimum=1)),
            session_title_max_chars=int(helper_config.get_number_val("SESSION_TITLE_MAX_CHARS", default=defaults.session_title_max_chars, minimum=1)),
            embed_batch_size=int(helper_config.get_number_val("EMBED_BATCH_SIZE", default=defaults.embed_batch_size, minimum=1)),
            stream_queue_size=int(helper_config.get_number_val("STREAM_QUEUE_SIZE", default=defaults.stream_queue_size, minimum=1)),
        )
