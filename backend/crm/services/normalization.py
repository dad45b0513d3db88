"""Contact and company data normalization service."""

import re
import logging
from typing import Dict, Any, Optional
import phonenumbers

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^\s@]+@([^\s@]+)$')


class NormalizationService:
    """Normalize and standardize contact and company data."""

    @staticmethod
    def normalize_email(email: Optional[str]) -> Optional[str]:
        """
        Normalize email address.
        - Convert to lowercase
        - Strip whitespace
        - Blank values become None
        """
        if email is None:
            return None
        normalized = email.strip().lower()
        return normalized or None

    @staticmethod
    def extract_domain(email: Optional[str]) -> Optional[str]:
        """Extract domain from email address."""
        if not email:
            return None
        match = EMAIL_RE.match(email.strip())
        if not match:
            return None
        return match.group(1).lower()

    @staticmethod
    def normalize_company_name(name: Optional[str]) -> Optional[str]:
        """Trim and collapse internal whitespace; casing is preserved for display."""
        if not name:
            return None
        normalized = ' '.join(name.split())
        return normalized or None

    def company_name_key(self, name: Optional[str]) -> Optional[str]:
        """Case-insensitive comparison key for company names."""
        normalized = self.normalize_company_name(name)
        return normalized.casefold() if normalized else None

    @staticmethod
    def normalize_phone(phone: Optional[str], default_region: str = "US") -> Optional[str]:
        """
        Normalize phone number to E.164 format.
        Returns the original value if parsing fails.
        """
        if not phone:
            return None

        try:
            # Remove common separators and whitespace
            cleaned = re.sub(r'[\s\-\(\)\.]', '', phone)

            parsed = phonenumbers.parse(cleaned, default_region)

            if phonenumbers.is_valid_number(parsed):
                return phonenumbers.format_number(
                    parsed,
                    phonenumbers.PhoneNumberFormat.E164
                )
        except phonenumbers.NumberParseException:
            logger.debug(f"Failed to parse phone number: {phone}")

        return phone.strip()

    @staticmethod
    def normalize_url(url: Optional[str]) -> Optional[str]:
        """
        Normalize URL.
        - Add https:// if missing
        - Remove trailing slashes
        """
        if not url or not url.strip():
            return None

        url = url.strip()

        if not url.startswith(('http://', 'https://')):
            url = f"https://{url}"

        return url.rstrip('/')

    def infer_website_from_email(self, email: Optional[str]) -> Optional[str]:
        """Infer https://www.<domain> from an email address."""
        domain = self.extract_domain(email)
        if not domain:
            return None
        return f"https://www.{domain}"

    def infer_company_name_from_email(self, email: Optional[str]) -> Optional[str]:
        """Turn 'jane@acme-labs.io' into 'Acme Labs'."""
        domain = self.extract_domain(email)
        if not domain:
            return None

        name = re.sub(r'^www\.', '', domain).split('.')[0]
        return ' '.join(word.capitalize() for word in re.split(r'[-_]', name) if word)

    def normalize_contact_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize the supplied contact fields.
        Only keys present in `fields` are touched; explicit None stays None.
        """
        normalized = dict(fields)

        if 'email' in normalized:
            normalized['email'] = self.normalize_email(normalized['email'])

        if 'phone' in normalized:
            normalized['phone'] = self.normalize_phone(normalized['phone'])

        for key in ('first_name', 'last_name', 'goes_by', 'title'):
            value = normalized.get(key)
            if isinstance(value, str):
                normalized[key] = value.strip() or None

        return normalized

    def normalize_company_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize optional company enrichment fields, dropping blanks."""
        normalized = {}
        for key, value in fields.items():
            if isinstance(value, str):
                value = value.strip() or None
            if value is None:
                continue
            if key == 'website':
                value = self.normalize_url(value)
            normalized[key] = value
        return normalized


# Singleton instance
normalization_service = NormalizationService()
