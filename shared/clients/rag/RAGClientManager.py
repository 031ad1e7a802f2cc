from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.persistence.database import Database


class RAGClientManager:
    """
    Manager class to instantiate the configured vector index engine.
    """

    def __init__(self, helper_config: HelperConfig, database: Database | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._database = database
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the vector index engine from ENV configuration (RAG_ENGINE, default "sql").

        Returns:
            str: Capitalised engine name (e.g. "Sql", "Memory").
        """
        engine = self.helper_config.get_string_val("RAG_ENGINE", default="sql")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> RAGClientInterface:
        """
        Instantiates the vector index for the configured engine.

        Returns:
            RAGClientInterface: The vector index instance.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"RAGClient{engine}"
        try:
            module = __import__(
                f"shared.clients.rag.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported RAG engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config, database=self._database)
        self.logging.debug(f"Instantiated RAG client for engine: {engine}")
        return client

    def get_client(self) -> RAGClientInterface:
        """
        Returns the instantiated vector index.

        Returns:
            RAGClientInterface: The vector index instance.
        """
        return self.client
