"""OCR engines, tried in order until one produces structured invoice data."""
import logging
import os
import random
from datetime import date, timedelta
from typing import Dict, Any, List, Optional, Tuple, Callable

import ollama

from shared import settings
from shared.storage import read_object, get_presigned_url
from services.extractor.llm import chat_completion, parse_json_object
from services.extractor.parser import InvoiceTextParser, file_kind

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = {
    "invoiceNumber": "The invoice or bill number",
    "vendorName": "Name of the company that issued the invoice",
    "issueDate": "Date the invoice was issued",
    "dueDate": "Date payment is due",
    "amount": "Total amount due",
    "currency": "Currency of the amounts",
    "items": "Line items with description, quantity, unit price, total and attributes",
    "tax": "Total tax charged",
    "notes": "Any notes, payment terms or remarks",
}

RESPONSE_SHAPE = """{
  "invoiceNumber": "extracted invoice number",
  "vendorName": "extracted vendor name",
  "issueDate": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD",
  "amount": numeric value only (e.g., 1234.56),
  "currency": "ISO currency code (e.g., USD, EUR)",
  "items": [
    {
      "description": "line item description",
      "quantity": numeric value,
      "unitPrice": numeric value,
      "totalPrice": numeric value,
      "attributes": {"name": "value"}
    }
  ],
  "tax": numeric value,
  "notes": "extracted notes",
  "language": "detected language code (e.g., en, fr, es)",
  "invoiceType": "PURCHASE if the organization is the buyer, PAYMENT if it is the seller",
  "confidence": confidence score between 0 and 1 for the extraction quality
}"""


class OCRProcessingError(Exception):
    """Raised when every OCR engine failed for a document."""


class OCRDocument:
    """An uploaded file, read from storage at most once."""

    def __init__(self, file_url: str, filename: str = None, loader: Callable[[str], bytes] = read_object):
        self.file_url = file_url
        self.filename = filename or os.path.basename(file_url or "")
        self.kind = file_kind(self.filename)
        self._loader = loader
        self._data = None
        self._text = None
        self._items = None

    @property
    def data(self) -> bytes:
        if self._data is None:
            self._data = self._loader(self.file_url)
        return self._data

    def text_and_items(self) -> Tuple[str, List[Dict[str, Any]]]:
        if self._text is None:
            self._text, self._items = InvoiceTextParser().extract_text(self.data, self.filename)
        return self._text, self._items


def build_prompt(
    fields: Optional[Dict[str, str]] = None,
    organization_name: str = "",
    custom_instructions: Optional[str] = None,
) -> str:
    """Build the extraction prompt shared by the model-backed engines."""
    fields = fields or DEFAULT_FIELDS
    fields_description = "\n".join(f"{name} ({desc})" for name, desc in fields.items())

    prompt = f"""Extract the following information from this invoice:

{fields_description}

Also, identify the language of the invoice.

Additional instructions:
- You can handle multiple languages, not just English
- For dates, always convert to YYYY-MM-DD format
- For currencies, detect the currency symbol and provide the ISO code
"""
    if organization_name:
        prompt += (
            f"- The document belongs to the organization \"{organization_name}\". "
            "Decide whether that organization is the buyer (PURCHASE) or the seller (PAYMENT)\n"
        )
    if custom_instructions:
        prompt += f"- {custom_instructions.strip()}\n"

    prompt += f"""
Format your response as a JSON object with the following structure:
{RESPONSE_SHAPE}

If any field is not found in the invoice, use null for that field."""
    return prompt


def extract_with_openai(document: OCRDocument, prompt: str) -> Tuple[Dict[str, Any], float]:
    """Hosted model: vision input for images, extracted text for everything else."""
    if document.kind == 'image':
        image_url = get_presigned_url(document.file_url) or document.file_url
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }]
        answer = chat_completion(messages, model=settings.openai_vision_model, max_tokens=4096)
    else:
        text, _ = document.text_and_items()
        if not text.strip():
            raise ValueError("No text could be read from the document")
        messages = [
            {"role": "system", "content": "You extract structured data from invoices and answer in JSON."},
            {"role": "user", "content": f"{prompt}\n\nInvoice text:\n{text[:12000]}"},
        ]
        answer = chat_completion(messages, model=settings.openai_text_model, max_tokens=4096)

    extracted = parse_json_object(answer)
    return extracted, float(extracted.get("confidence") or 0.9)


def extract_with_local_model(document: OCRDocument, prompt: str) -> Tuple[Dict[str, Any], float]:
    """Local engine: read the text ourselves, let Ollama structure it.

    When Ollama is unreachable or answers with something that is not JSON,
    the regex parser fills in what it can at a lower confidence.
    """
    text, table_items = document.text_and_items()
    if not text.strip():
        raise ValueError("No text could be read from the document")

    try:
        client = ollama.Client(host=settings.ollama_base_url)
        response = client.generate(
            model=settings.ollama_model,
            prompt=f"{prompt}\n\nInvoice text:\n{text[:8000]}\n\nReturn ONLY the JSON object, no other text.",
            options={"temperature": 0.1},
        )
        extracted = parse_json_object(response['response'])
        if not extracted.get("items") and table_items:
            extracted["items"] = table_items
        return extracted, float(extracted.get("confidence") or 0.7)
    except Exception as e:
        logger.warning(f"Ollama structuring failed, using regex parser: {e}")

    extracted = InvoiceTextParser().parse(text, table_items)
    if extracted.get("amount") is None and not extracted.get("vendorName"):
        raise ValueError("Local extraction found no invoice fields")
    extracted["confidence"] = 0.6
    return extracted, 0.6


def extract_simulated(document: OCRDocument, prompt: str = "") -> Tuple[Dict[str, Any], float]:
    """Placeholder data for when no real engine could read the file."""
    confidence = {'pdf': 0.75, 'image': 0.65}.get(document.kind, 0.5)
    today = date.today()
    unit_price = random.randint(50, 149)

    extracted = {
        "invoiceNumber": f"INV-{random.randint(0, 9999)}",
        "vendorName": random.choice(["Amazon", "Microsoft", "Google", "Dell", "Apple"]),
        "issueDate": (today - timedelta(days=random.randint(0, 29))).isoformat(),
        "dueDate": (today + timedelta(days=random.randint(1, 30))).isoformat(),
        "amount": random.randint(100, 1099),
        "currency": "USD",
        "items": [{
            "description": "Fallback extracted item",
            "quantity": 1,
            "unitPrice": unit_price,
            "totalPrice": unit_price,
        }],
        "tax": random.randint(5, 24),
        "notes": "This data was generated by the fallback OCR engine with reduced accuracy",
        "language": "en",
        "confidence": confidence,
    }
    return extracted, confidence


ENGINE_CHAIN = [
    ("openai", extract_with_openai),
    ("local", extract_with_local_model),
    ("simulated", extract_simulated),
]


def run_engine_chain(document: OCRDocument, prompt: str) -> Tuple[str, Dict[str, Any], float]:
    """Try each engine once, in order. Returns (engine_name, extracted, confidence)."""
    errors = []
    for name, engine in ENGINE_CHAIN:
        if name == "simulated" and not settings.simulated_ocr_enabled:
            continue
        try:
            extracted, confidence = engine(document, prompt)
            logger.info(f"OCR engine '{name}' processed {document.filename} (confidence {confidence:.2f})")
            return name, extracted, confidence
        except Exception as e:
            logger.warning(f"OCR engine '{name}' failed for {document.filename}: {e}")
            errors.append(f"{name}: {e}")

    raise OCRProcessingError(f"OCR processing failed with all engines: {'; '.join(errors)}")
