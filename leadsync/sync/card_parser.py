"""
Card → lead field extraction.

Pure functions: no network, no database. Cards created by the intake form
carry an emoji-prefixed description ("📍 Destino: Cancún"), which takes
priority over free-text heuristics.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

NO_DESTINATION = 'Sin destino'

# Labels that describe priority rather than a destination.
PRIORITY_LABELS = {'urgent', 'important', 'low', 'high', 'medium'}

CARD_NAME_SPLIT_REGEX = re.compile(r'\s+-\s+|\s*[:|,]\s*')

DESCRIPTION_PATTERNS = {
    'destino': re.compile(r'📍\s*Destino:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'fechas': re.compile(r'📅\s*Fechas:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'personas': re.compile(r'👥\s*Personas:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'menores': re.compile(r'👶\s*Menores:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'presupuesto': re.compile(r'💰\s*Presupuesto:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'servicio': re.compile(r'✈️?\s*Servicio:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'evento': re.compile(r'🎟️?\s*Evento:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'whatsapp': re.compile(r'📱\s*WhatsApp:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'instagram': re.compile(r'Instagram:\s*(.+?)(?=\n|$)', re.IGNORECASE),
    'fase': re.compile(r'Fase:\s*(.+?)(?=\n|$)', re.IGNORECASE),
}

PHONE_REGEX = re.compile(r'(\+?\d{1,4}[\s-]?)?\(?\d{1,4}\)?[\s-]?\d{1,4}[\s-]?\d{1,4}[\s-]?\d{1,9}')
EMAIL_REGEX = re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}')
INSTAGRAM_HANDLE_REGEX = re.compile(r'(?<![\w.])@([a-zA-Z0-9._]+)')

MIN_PHONE_DIGITS = 7


def split_card_name(name: str) -> List[str]:
    return [part for part in CARD_NAME_SPLIT_REGEX.split(name or '') if part.strip()]


def parse_description_fields(desc: str) -> Dict[str, str]:
    """Extract the structured intake fields present in a description."""
    fields = {}
    if not desc:
        return fields
    for key, pattern in DESCRIPTION_PATTERNS.items():
        match = pattern.search(desc)
        if match and match.group(1).strip():
            fields[key] = match.group(1).strip()
    return fields


def extract_phone(desc: str, name: str) -> str:
    for match in PHONE_REGEX.finditer(f"{desc or ''} {name or ''}"):
        candidate = match.group(0).strip()
        if sum(ch.isdigit() for ch in candidate) >= MIN_PHONE_DIGITS:
            return candidate
    return ''


def extract_email(desc: str, name: str) -> Optional[str]:
    match = EMAIL_REGEX.search(f"{desc or ''} {name or ''}")
    return match.group(0) if match else None


def extract_instagram(desc: str, name: str) -> Optional[str]:
    structured = DESCRIPTION_PATTERNS['instagram'].search(desc or '')
    if structured:
        handle = structured.group(1).strip().lstrip('@').strip()
        return handle or None
    match = INSTAGRAM_HANDLE_REGEX.search(f"{desc or ''} {name or ''}")
    return match.group(1) if match else None


def parse_destination(card: Dict[str, Any]) -> str:
    """First non-priority label, else the second segment of the card name."""
    for label in card.get('labels') or []:
        label_name = (label.get('name') or '').strip()
        if label_name and label_name.lower() not in PRIORITY_LABELS:
            return label_name

    parts = split_card_name(card.get('name', ''))
    if len(parts) > 1:
        return parts[1].strip() or NO_DESTINATION
    return NO_DESTINATION


def parse_activity_date(value) -> Optional[datetime]:
    """Parse a Trello ISO timestamp to an aware datetime; None when absent or malformed."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def card_list_id(card: Dict[str, Any]) -> Optional[str]:
    return card.get('idList') or (card.get('list') or {}).get('id') or None


def build_card_snapshot(card: Dict[str, Any], description_fields: Dict[str, str]) -> Dict[str, Any]:
    """JSON-safe copy of the card details worth keeping on the lead."""
    custom_fields = {
        item.get('idCustomField'): item.get('value')
        for item in card.get('customFieldItems') or []
        if item.get('value')
    }
    snapshot = {
        'id': card.get('id'),
        'name': card.get('name'),
        'desc': card.get('desc'),
        'url': card.get('url'),
        'shortUrl': card.get('shortUrl'),
        'idList': card_list_id(card),
        'idBoard': card.get('idBoard'),
        'closed': bool(card.get('closed')),
        'dateLastActivity': card.get('dateLastActivity'),
        'labels': card.get('labels') or [],
        'members': card.get('members') or [],
        'idMembers': card.get('idMembers') or [],
        'due': card.get('due'),
        'dueComplete': card.get('dueComplete'),
        'start': card.get('start'),
        'attachments': card.get('attachments') or [],
        'checklists': card.get('checklists') or [],
        'customFieldsData': custom_fields,
        'badges': card.get('badges') or {},
        'actions': card.get('actions') or [],
        'board': card.get('board'),
        'list': card.get('list'),
        'syncedAt': datetime.now(timezone.utc).isoformat(),
    }
    if description_fields:
        snapshot['descriptionFields'] = description_fields
    return snapshot


def card_to_lead_fields(card: Dict[str, Any], status: str, region: Optional[str],
                        list_name: Optional[str]) -> Dict[str, Any]:
    """
    Map a full card payload to the lead columns a sync is allowed to write.

    region is omitted when None so an existing lead keeps its region.
    """
    desc = card.get('desc') or ''
    name = (card.get('name') or '').strip()
    description_fields = parse_description_fields(desc)

    fields = {
        'status': status,
        'destination': description_fields.get('destino') or parse_destination(card),
        'contact_name': name,
        'contact_phone': description_fields.get('whatsapp') or extract_phone(desc, name),
        'contact_email': extract_email(desc, name),
        'contact_instagram': extract_instagram(desc, name),
        'trello_url': card.get('url') or card.get('shortUrl'),
        'trello_list_id': card_list_id(card),
        'trello_list_name': list_name or (card.get('list') or {}).get('name'),
        'trello_full_data': build_card_snapshot(card, description_fields),
        'last_activity_at': parse_activity_date(card.get('dateLastActivity')),
    }
    if region:
        fields['region'] = region
    return fields


# ── Seller matching ──────────────────────────────────────────────────────────

def first_member_name(card: Dict[str, Any]) -> str:
    members = card.get('members') or []
    if not members:
        return ''
    member = members[0]
    return (member.get('fullName') or member.get('username') or '').strip()


def match_seller(member_name: str, sellers: Iterable) -> Optional[Any]:
    """
    Find the seller whose name matches a Trello member name.

    Matches, in order of preference per seller: whitespace-insensitive
    equality or containment, then the same first word.
    """
    if not member_name:
        return None
    compact = re.sub(r'\s+', '', member_name.lower())
    first_word = member_name.lower().split()[0]

    for seller in sellers:
        seller_name = (seller.name or '').lower()
        seller_compact = re.sub(r'\s+', '', seller_name)
        if not seller_compact:
            continue
        if seller_compact == compact or seller_compact in compact or compact in seller_compact:
            return seller
        seller_words = seller_name.split()
        if seller_words and seller_words[0] == first_word:
            return seller
    return None
