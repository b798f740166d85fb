"""
Locale context for user-facing text.

Routes receive a Locale through the get_locale dependency instead of
reading a global language setting.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import Header

from config import settings

MESSAGES: Dict[str, Dict[str, str]] = {
    "tr": {
        "report.revenue_title": "Gelir Raporu",
        "report.customer": "Müşteri",
        "report.branch": "Şube",
        "report.operator": "Operatör",
        "report.visits": "Ziyaret Sayısı",
        "report.pricing_type": "Fiyatlandırma",
        "report.service_revenue": "Hizmet Geliri",
        "report.material_revenue": "Malzeme Geliri",
        "report.total": "Toplam",
        "report.totals": "GENEL TOPLAM",
        "pricing.monthly": "Aylık",
        "pricing.per_visit": "Ziyaret Başı",
        "pricing.none": "Fiyat Yok",
        "annual.title": "Yıllık Rapor",
        "annual.customer_no": "Müşteri No",
        "annual.branch_id": "Şube ID",
        "annual.customer": "Müşteri",
        "annual.branch": "Şube",
        "annual.visits": "Ziyaret",
        "annual.materials": "Malzeme",
        "annual.visit_confirmed": "Ziyaret Onay",
        "annual.material_invoiced": "Malzeme Fatura",
        "annual.status.full": "EVET",
        "annual.status.partial": "KISMEN",
        "annual.status.none": "HAYIR",
        "import.full_name": "Ad Soyad",
        "import.company_name": "Şirket Adı",
        "import.email": "E-posta",
        "import.phone": "Telefon",
        "import.password": "Şifre",
        "import.sheet": "Müşteriler",
        "import.unknown": "bilinmiyor",
        "import.missing_fields": "Satır atlandı: eksik bilgi - {email}",
        "import.limit_exceeded": (
            "Müşteri limiti aşılıyor: mevcut {current}, eklenecek {requested}, limit {limit}. "
            "En fazla {remaining} müşteri ekleyebilirsiniz."
        ),
        "import.more_errors": "... ve {count} hata daha",
        "import.summary": "{success} müşteri eklendi, {errors} hata",
        "import.empty_file": "Dosyada içe aktarılacak satır bulunamadı",
        "import.unreadable": "Dosya okunamadı: {error}",
        "limits.operators": "Operatörler",
        "limits.customers": "Müşteriler",
        "limits.branches": "Şubeler",
        "limits.warehouses": "Depolar",
    },
    "en": {
        "report.revenue_title": "Revenue Report",
        "report.customer": "Customer",
        "report.branch": "Branch",
        "report.operator": "Operator",
        "report.visits": "Visits",
        "report.pricing_type": "Pricing",
        "report.service_revenue": "Service Revenue",
        "report.material_revenue": "Material Revenue",
        "report.total": "Total",
        "report.totals": "GRAND TOTAL",
        "pricing.monthly": "Monthly",
        "pricing.per_visit": "Per Visit",
        "pricing.none": "No Pricing",
        "annual.title": "Annual Report",
        "annual.customer_no": "Customer No",
        "annual.branch_id": "Branch ID",
        "annual.customer": "Customer",
        "annual.branch": "Branch",
        "annual.visits": "Visits",
        "annual.materials": "Materials",
        "annual.visit_confirmed": "Visit Confirmed",
        "annual.material_invoiced": "Material Invoiced",
        "annual.status.full": "YES",
        "annual.status.partial": "PARTIAL",
        "annual.status.none": "NO",
        "import.full_name": "Full Name",
        "import.company_name": "Company Name",
        "import.email": "Email",
        "import.phone": "Phone",
        "import.password": "Password",
        "import.sheet": "Customers",
        "import.unknown": "unknown",
        "import.missing_fields": "Row skipped: missing info - {email}",
        "import.limit_exceeded": (
            "Customer limit would be exceeded: {current} in use, {requested} to add, limit {limit}. "
            "You can add at most {remaining} customers."
        ),
        "import.more_errors": "... and {count} more",
        "import.summary": "{success} customers imported, {errors} failed",
        "import.empty_file": "The file has no rows to import",
        "import.unreadable": "Could not read the file: {error}",
        "limits.operators": "Operators",
        "limits.customers": "Customers",
        "limits.branches": "Branches",
        "limits.warehouses": "Warehouses",
    },
}

MONTH_NAMES: Dict[str, List[str]] = {
    "tr": ["Ocak", "Şubat", "Mart", "Nisan", "Mayıs", "Haziran",
           "Temmuz", "Ağustos", "Eylül", "Ekim", "Kasım", "Aralık"],
    "en": ["January", "February", "March", "April", "May", "June",
           "July", "August", "September", "October", "November", "December"],
}


@dataclass(frozen=True)
class Locale:
    code: str
    messages: Dict[str, str] = field(repr=False)
    month_names: List[str] = field(repr=False)

    def t(self, key: str, **kwargs) -> str:
        text = self.messages.get(key) or MESSAGES["en"].get(key, key)
        return text.format(**kwargs) if kwargs else text

    def month_name(self, month: int) -> str:
        return self.month_names[month - 1]


def get_locale_for(code: Optional[str]) -> Locale:
    code = (code or settings.DEFAULT_LANGUAGE).lower()
    if code not in MESSAGES:
        code = settings.DEFAULT_LANGUAGE if settings.DEFAULT_LANGUAGE in MESSAGES else "en"
    return Locale(code=code, messages=MESSAGES[code], month_names=MONTH_NAMES[code])


def parse_accept_language(header: Optional[str]) -> Optional[str]:
    """Pick the first supported language from an Accept-Language header."""
    if not header:
        return None
    for part in header.split(","):
        tag = part.split(";")[0].strip().lower()
        primary = tag.split("-")[0]
        if primary in MESSAGES:
            return primary
    return None


async def get_locale(accept_language: Optional[str] = Header(None)) -> Locale:
    """FastAPI dependency: locale from the Accept-Language header"""
    return get_locale_for(parse_accept_language(accept_language))


def all_labels(key: str) -> List[str]:
    """Every translation of a message key, used to accept headers in any language."""
    return [messages[key] for messages in MESSAGES.values() if key in messages]
