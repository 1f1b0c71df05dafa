"""
Strips meta-commentary about tool usage from final answers.

Models asked to "answer directly" still narrate: "I'll use the search_web
tool...", "According to the search results...", "As of my knowledge
cutoff...". Those sentences are removed. If removal would leave almost
nothing, the input is returned exactly as given, surrounding whitespace
included.
"""

from typing import List, Optional, Sequence
import re
import structlog

logger = structlog.get_logger(__name__)

_TOOLS = r"(?:search_web|get_weather|get_current_time|calculate|convert_currency)"

# Each pattern consumes one sentence up to and including its period
REMOVAL_PATTERNS: List["re.Pattern[str]"] = [re.compile(r"\b" + p, re.I) for p in (
    r"I'm not able to provide[^.]*\.\s*",
    r"I can suggest using[^.]*\.\s*",
    r"You can use (the )?[^.]*tool[^.]*\.\s*",
    r"To use (the )?[^.]*tool[^.]*\.\s*",
    r"Please note that (this )?tool[^.]*\.\s*",
    r"Here's an example of what[^.]*\.\s*",
    r"Example Output[^.]*\.\s*",
    r"get_weather\s+[A-Z][^.]*\.\s*",
    r"To get (the )?(most )?(up-to-date|latest|current) information[^.]*\.\s*",
    r"To find (the )?current information[^.]*\.\s*",
    r"I (will|need to|should|must|am going to|'ll) (use|search|look up)[^.]*\.\s*",
    rf"I (will|need to|should|must) use (the )?{_TOOLS} tool[^.]*\.\s*",
    rf"Using (the )?{_TOOLS} tool[^.]*\.\s*",
    r"I've searched (for|the web)[^.]*\.\s*",
    r"According to (the )?(latest|search results|my search|the search|my knowledge)[^.]*\.\s*",
    r"As of my knowledge (cutoff|in 2023)[^.]*\.\s*",
    r"However, please note that my training data[^.]*\.\s*",
    r"my training data[^.]*\.\s*",
    r"(However, )?I'm a large language model[^.]*\.\s*",
    r"For the most up-to-date information[^.]*\.\s*",
    r"I recommend checking[^.]*\.\s*",
    r"(However, )?please note that[^.]*\.\s*",
    r"However, I'm[^.]*\.\s*",
    r"I may not have the most up-to-date information[^.]*\.\s*",
    r"Based on (the )?(search results|latest information|my search|the search)[^.]*\.\s*",
    r"I found that[^.]*\.\s*",
    r"The search (results|shows|indicates|reveals)[^.]*\.\s*",
    r"After (searching|using the tool|looking up)[^.]*\.\s*",
    r"(From|Based on) (the )?(search|latest information|web search)[^.]*\.\s*",
    r"(I|I'll|I will) (search|look up|check)[^.]*\.\s*",
    r"Let me (search|look up|check)[^.]*\.\s*",
)]

# Only removed when they open a line
LINE_START_PATTERNS: List["re.Pattern[str]"] = [re.compile(p, re.I | re.M) for p in (
    r"^As of my knowledge[^.]*\.\s*",
    r"^However, I'm[^.]*\.\s*",
    r"^However, please note[^.]*\.\s*",
    r"^my training data[^.]*\.\s*",
    r"^I may not have[^.]*\.\s*",
    r"^To get the most[^.]*\.\s*",
    r"^I'll use the[^.]*\.\s*",
)]

METADATA_PHRASES = (
    "the document content appears", "the document starts with", "the document includes",
    "the document also includes", "the document contains", "pdf file with",
    "breakdown of the content", "here's a breakdown", "metadata", "xmp",
    "adobe indesign", "bitspercomponent", "colorspace", "image object",
    "xmp core", "adobe xmp core", "embedded object", "pdf structure",
)

NOISE_PHRASES = (
    "collection of fragments", "anomalies", "repetitive", "random sequences",
    "discernible patterns", "meaningful content", "coherent", "anomalous characters",
    "repeated sequences", "random sequences of numbers", "fragments and anomalies",
)

# Markdown rules, table borders and long numbers are not noise
_REPEATED_CHARACTER = re.compile(r"([^\s\d\-=_*#.|])\1{10,}")
_PDF_OBJECT_REFERENCES = re.compile(r"\d+\s+0\s+R(\s+\d+\s+0\s+R){3,}")

NOISE_GUIDANCE_MESSAGE = (
    "I couldn't extract meaningful content from this PDF. The document appears to contain mostly "
    "metadata, structural information, or unreadable text (possibly image-based or corrupted). "
    "Please try:\n\n"
    "1. Converting the PDF to a text file (.txt) and uploading that\n"
    "2. Copying the PDF text content to a text file\n"
    "3. Using a URL to an article or webpage instead\n"
    "4. Ensuring the PDF contains selectable text (not just images)\n"
    "5. If the PDF is scanned, use OCR to extract text first"
)


class ResponseSanitizer:
    """Removes tool narration and disclaimers, and replaces document-noise answers"""

    def __init__(
        self,
        patterns: Optional[Sequence["re.Pattern[str]"]] = None,
        line_start_patterns: Optional[Sequence["re.Pattern[str]"]] = None,
        max_passes: int = 5,
        min_length: int = 10
    ):
        self.patterns = list(REMOVAL_PATTERNS if patterns is None else patterns)
        self.line_start_patterns = list(LINE_START_PATTERNS if line_start_patterns is None else line_start_patterns)
        self.max_passes = max_passes
        self.min_length = min_length

    def sanitize(self, text: str) -> str:
        if not text:
            return text

        cleaned = text.strip()

        # Repeated passes catch phrases exposed by an earlier removal
        for _ in range(self.max_passes):
            before = cleaned
            for pattern in self.patterns:
                cleaned = pattern.sub("", cleaned)
            if cleaned == before:
                break

        for pattern in self.line_start_patterns:
            cleaned = pattern.sub("", cleaned)

        cleaned = self.collapse_whitespace(cleaned)

        if len(cleaned) < self.min_length:
            logger.debug("Sanitized text too short, returning input unchanged", cleaned_length=len(cleaned))
            cleaned = text

        if self.is_noise(cleaned):
            logger.warning("Answer describes document noise, replacing with guidance", length=len(cleaned))
            return NOISE_GUIDANCE_MESSAGE

        return cleaned

    @staticmethod
    def collapse_whitespace(text: str) -> str:
        """Collapse space runs inside lines and blank-line runs; keeps line structure"""
        lines = []
        for line in text.split("\n"):
            indent = re.match(r"[ \t]*", line).group(0)
            body = re.sub(r"[ \t]+", " ", line[len(indent):]).rstrip()
            lines.append(indent + body if body else "")

        collapsed = "\n".join(lines)
        collapsed = re.sub(r"\n{3,}", "\n\n", collapsed)
        collapsed = re.sub(r"(?<!\.)\.[ \t]+\.(?!\.)", ".", collapsed)
        collapsed = re.sub(r"^\s*[.,](?![.\d])\s*", "", collapsed)
        return collapsed.strip()

    @staticmethod
    def is_noise(text: str) -> bool:
        """Whether the answer is about PDF structure or garbage rather than content"""
        lower = text.lower()
        metadata_count = sum(1 for phrase in METADATA_PHRASES if phrase in lower)
        noise_count = sum(1 for phrase in NOISE_PHRASES if phrase in lower)

        return (
            metadata_count >= 3
            or noise_count >= 2
            or (metadata_count >= 2 and len(text) < 500)
            or bool(_REPEATED_CHARACTER.search(text))
            or bool(_PDF_OBJECT_REFERENCES.search(text))
        )
