import asyncio
import io

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from shared.exceptions import EmptyInput
from shared.helper.HelperConfig import HelperConfig


class TextExtractor:
    """Extracts plain text from uploaded PDF files."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()

    def _extract_sync(self, data: bytes) -> str:
        """
        Extract text from PDF safely. Handles pages where extract_text() may return None.
        """
        pdf_reader = PdfReader(io.BytesIO(data))
        text_parts = []
        for page in pdf_reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
        return "\n".join(text_parts)

    async def extract(self, data: bytes, filename: str | None = None) -> str:
        """Return the text of a PDF byte stream.

        Raises:
            EmptyInput: If the bytes are not a readable PDF or contain no text.
        """
        if not data:
            raise EmptyInput("Uploaded file is empty.")
        try:
            text = await asyncio.to_thread(self._extract_sync, data)
        except PdfReadError as e:
            self.logging.warning("Could not read PDF '%s': %s", filename or "<upload>", e)
            raise EmptyInput(f"Could not read PDF: {e}") from e
        if not text.strip():
            raise EmptyInput("No text could be extracted from the PDF.")
        self.logging.debug("Extracted %d characters from '%s'.", len(text), filename or "<upload>")
        return text
