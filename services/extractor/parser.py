"""Local text extraction and regex field parsing for uploaded invoice files."""
import io
import logging
import re
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import pdfplumber
from pdf2image import convert_from_bytes
import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = ('.pdf',)
IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tif', '.tiff')
SPREADSHEET_EXTENSIONS = ('.csv', '.xls', '.xlsx')

CURRENCY_SYMBOLS = {'$': 'USD', '€': 'EUR', '£': 'GBP', '₹': 'INR', '¥': 'JPY'}

DATE_FORMATS = ('%Y-%m-%d', '%d/%m/%Y', '%m/%d/%Y', '%d-%m-%Y', '%m-%d-%Y', '%d/%m/%y', '%m/%d/%y', '%d.%m.%Y')


def file_kind(filename: str) -> str:
    """Classify a filename as pdf, image, spreadsheet or other."""
    name = (filename or '').lower()
    if name.endswith(PDF_EXTENSIONS):
        return 'pdf'
    if name.endswith(IMAGE_EXTENSIONS):
        return 'image'
    if name.endswith(SPREADSHEET_EXTENSIONS):
        return 'spreadsheet'
    return 'other'


def normalize_date(value: str) -> Optional[str]:
    """Convert a loosely formatted date into YYYY-MM-DD."""
    if not value:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).strftime('%Y-%m-%d')
        except ValueError:
            continue
    return None


def _to_float(value: Any) -> Optional[float]:
    cleaned = re.sub(r'[^\d.\-]', '', str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class InvoiceTextParser:
    """Pulls raw text out of invoice files and parses fields from it."""

    def __init__(self):
        self.patterns = {
            'invoiceNumber': [
                r'invoice\s*(?:no\.?|number|#)\s*:?\s*([A-Z0-9][A-Z0-9\-/]+)',
                r'inv\s*(?:no\.?|#)\s*:?\s*([A-Z0-9][A-Z0-9\-/]+)',
                r'bill\s*(?:no\.?|number|#)\s*:?\s*([A-Z0-9][A-Z0-9\-/]+)',
                r'receipt\s*(?:no\.?|number|#)\s*:?\s*([A-Z0-9][A-Z0-9\-/]+)',
            ],
            'issueDate': [
                r'(?:invoice|issue)\s+date\s*:?\s*(\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4})',
                r'(?<!due )\bdate\s*:?\s*(\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4})',
            ],
            'dueDate': [
                r'due\s+date\s*:?\s*(\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4})',
                r'payment\s+due\s*:?\s*(\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4})',
            ],
            'amount': [
                r'grand\s+total\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
                r'amount\s+due\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
                r'balance\s+due\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
                r'\btotal\s*(?:amount)?\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
            ],
            'tax': [
                r'(?:sales\s+)?tax(?:\s+amount)?\s*(?:\(\s*[\d.]+\s*%\s*\))?\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
                r'vat\s*:?\s*[$€£₹]?\s*([\d,]+\.?\d*)',
            ],
        }

    def extract_text_from_pdf(self, pdf_bytes: bytes) -> Tuple[str, List[Dict[str, Any]]]:
        """Extract text from PDF - tries the text layer first, then OCR."""
        text_parts = []
        line_items = []

        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                for page in pdf.pages:
                    page_text = page.extract_text()
                    if page_text:
                        text_parts.append(page_text)
                    for table in page.extract_tables():
                        line_items.extend(self._rows_to_line_items(table))
        except Exception as e:
            logger.error(f"Error reading PDF text layer: {e}")

        full_text = "\n".join(text_parts)
        if len(full_text.strip()) < 100:
            logger.info("PDF text layer is thin, running OCR on page images")
            images = convert_from_bytes(pdf_bytes, dpi=200)
            full_text = "\n".join(pytesseract.image_to_string(img) for img in images)

        return full_text, line_items

    def extract_text_from_image(self, image_bytes: bytes) -> str:
        """Extract text from an image using OCR."""
        image = Image.open(io.BytesIO(image_bytes))
        return pytesseract.image_to_string(image)

    def extract_text_from_spreadsheet(self, data: bytes, filename: str) -> Tuple[str, List[Dict[str, Any]]]:
        """Read a CSV/XLS/XLSX upload; rows become candidate line items."""
        if filename.lower().endswith('.csv'):
            frame = pd.read_csv(io.BytesIO(data))
        else:
            frame = pd.read_excel(io.BytesIO(data))

        frame = frame.dropna(how='all')
        header = [str(c) for c in frame.columns]
        rows = [header] + frame.fillna('').astype(str).values.tolist()
        return frame.to_string(index=False), self._rows_to_line_items(rows)

    def extract_text(self, data: bytes, filename: str) -> Tuple[str, List[Dict[str, Any]]]:
        """Dispatch on file type and return (text, table line items)."""
        kind = file_kind(filename)
        if kind == 'pdf':
            return self.extract_text_from_pdf(data)
        if kind == 'image':
            return self.extract_text_from_image(data), []
        if kind == 'spreadsheet':
            return self.extract_text_from_spreadsheet(data, filename)
        raise ValueError(f"Unsupported file type for local extraction: {filename}")

    def _rows_to_line_items(self, table: List[List[Any]]) -> List[Dict[str, Any]]:
        """Map a table whose header mentions qty/price/description to line items."""
        if not table or len(table) < 2:
            return []

        header_idx = None
        for idx, row in enumerate(table[:3]):
            row_text = ' '.join(str(cell or '').lower() for cell in row)
            if any(k in row_text for k in ('qty', 'quantity', 'price', 'description', 'item')):
                header_idx = idx
                break
        if header_idx is None:
            return []

        columns = {}
        for i, cell in enumerate(table[header_idx]):
            h = str(cell or '').strip().lower()
            if any(k in h for k in ('description', 'item', 'product', 'service')):
                columns[i] = 'description'
            elif 'qty' in h or 'quantity' in h:
                columns[i] = 'quantity'
            elif 'unit' in h or 'rate' in h or h == 'price':
                columns[i] = 'unitPrice'
            elif 'total' in h or 'amount' in h:
                columns[i] = 'totalPrice'
            elif 'sku' in h:
                columns[i] = 'productSku'

        items = []
        for row in table[header_idx + 1:]:
            item: Dict[str, Any] = {}
            for i, cell in enumerate(row):
                key = columns.get(i)
                if not key or cell in (None, ''):
                    continue
                if key in ('quantity', 'unitPrice', 'totalPrice'):
                    number = _to_float(cell)
                    if number is not None:
                        item[key] = number
                else:
                    item[key] = str(cell).strip()
            if item.get('description') and (item.get('quantity') or item.get('unitPrice') or item.get('totalPrice')):
                item.setdefault('quantity', 1)
                items.append(item)
        return items

    def extract_field(self, field_name: str, text: str) -> Optional[Any]:
        """Return the first pattern match for a field, converted to its type."""
        for pattern in self.patterns.get(field_name, []):
            match = re.search(pattern, text, re.IGNORECASE | re.MULTILINE)
            if not match:
                continue
            value = match.group(1)
            if field_name in ('amount', 'tax'):
                number = _to_float(value.replace(',', ''))
                if number is None:
                    continue
                return number
            if field_name in ('issueDate', 'dueDate'):
                normalized = normalize_date(value)
                if normalized:
                    return normalized
                continue
            return value
        return None

    def extract_vendor_name(self, text: str) -> Optional[str]:
        """Guess the vendor from the document header lines."""
        for line in text.split('\n')[:15]:
            line_clean = line.strip()
            if len(line_clean) < 3 or line_clean[0].islower():
                continue
            if re.match(r'^(invoice|bill|receipt|date|to|ship|page)\b', line_clean, re.IGNORECASE):
                continue
            match = re.match(r'^([A-Z][A-Za-z0-9&.,\'\s]{2,60}?(?:Pvt|Ltd|Inc|LLC|Corp|GmbH|Co)\.?)\b', line_clean)
            if match:
                return match.group(1).strip()
            words = line_clean.split()
            if 1 < len(words) <= 6 and sum(1 for w in words if w[:1].isupper()) == len(words):
                return line_clean
        return None

    def detect_currency(self, text: str) -> Optional[str]:
        code = re.search(r'\b(USD|EUR|GBP|INR|JPY|CAD|AUD)\b', text)
        if code:
            return code.group(1)
        for symbol, iso in CURRENCY_SYMBOLS.items():
            if symbol in text:
                return iso
        return None

    def parse(self, text: str, line_items: List[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Build an extraction dict in the same shape the hosted models return."""
        result = {
            'invoiceNumber': self.extract_field('invoiceNumber', text),
            'vendorName': self.extract_vendor_name(text),
            'issueDate': self.extract_field('issueDate', text),
            'dueDate': self.extract_field('dueDate', text),
            'amount': self.extract_field('amount', text),
            'currency': self.detect_currency(text),
            'items': line_items or [],
            'tax': self.extract_field('tax', text),
            'notes': None,
        }
        return result
