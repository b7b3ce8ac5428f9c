"""
QR Code Generator Module - Smart Class QR Scheduler

This module issues the single-use QR credentials that give a professor access
to a classroom shortly before their class starts. It generates a unique
payload per issuance, persists it with an expiry, renders it as a PNG for the
notification email, and validates scanned payloads at the door.

Features:
- Unique credential payloads per issuance
- Fixed validity window (one hour by default)
- QR code image rendering (qrcode + Pillow)
- Scan validation and single-use consumption
"""

import qrcode
import io
import base64
import secrets
import sqlite3
import time
import uuid
from datetime import datetime, timedelta
import logging
from typing import Optional, Dict, Any

from smartclass.modules.errors import IssuanceFailed
from smartclass.modules.models import Credential


class QRGenerator:
    """
    Credential issuer for upcoming classes.

    issue_credential is not idempotent: two calls for the same schedule give
    two distinct credentials. Suppressing repeats is the scheduler's job.
    """

    PAYLOAD_PREFIX = 'CLASS'

    def __init__(self, database_manager, validity: timedelta = timedelta(hours=1),
                 image_settings: Optional[Dict[str, Any]] = None):
        """
        Initialize the QR code generator.

        Args:
            database_manager: Database manager used to persist credentials
            validity (timedelta): How long an issued credential stays valid
            image_settings (dict): Overrides for the QR image settings
        """
        self.db = database_manager
        self.validity = validity
        self.logger = logging.getLogger(__name__)

        self.image_settings = {
            'version': 1,  # Controls the size of the QR Code
            'error_correction': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
            'box_size': 10,
            'border': 4,    # Minimum is 4
            'fill_color': 'black',
            'back_color': 'white'
        }
        if image_settings:
            self.image_settings.update(image_settings)

    def _generate_payload(self, schedule_id: str) -> str:
        # CLASS:<schedule id>:<epoch ms>:<random hex>, unique per issuance
        return f"{self.PAYLOAD_PREFIX}:{schedule_id}:{time.time_ns() // 1_000_000}:{secrets.token_hex(4)}"

    def issue_credential(self, schedule_id: str, now: Optional[datetime] = None) -> Credential:
        """
        Generate and persist a credential for a class schedule.

        Args:
            schedule_id (str): Schedule the credential is issued for
            now (datetime): Issuance time, defaults to the current time

        Returns:
            Credential: The persisted credential

        Raises:
            IssuanceFailed: If the credential could not be persisted
        """
        if not schedule_id:
            raise IssuanceFailed("A schedule id is required to issue a credential")

        created_at = now or datetime.now()
        if created_at.tzinfo is not None:
            # Stored timestamps are naive local time
            created_at = created_at.astimezone().replace(tzinfo=None)
        credential = Credential(
            id=uuid.uuid4().hex,
            schedule_id=schedule_id,
            payload=self._generate_payload(schedule_id),
            created_at=created_at,
            expires_at=created_at + self.validity,
            used=False
        )

        try:
            self.db.insert_credential(credential)
        except sqlite3.Error as e:
            self.logger.error(f"Failed to store QR code for schedule {schedule_id}: {str(e)}")
            raise IssuanceFailed(f"Failed to generate QR code for schedule {schedule_id}") from e

        self.logger.info(f"QR code {credential.id} issued for schedule {schedule_id}, "
                         f"expires at {credential.expires_at.isoformat()}")
        return credential

    def render_qr_image(self, payload: str) -> str:
        """
        Render a payload as a QR code PNG.

        Args:
            payload (str): Data to encode

        Returns:
            str: Base64 encoded PNG image
        """
        settings = self.image_settings
        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return base64.b64encode(buffer.getvalue()).decode()

    def validate_credential(self, payload: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Check a scanned payload against the issued credentials.

        Args:
            payload (str): Scanned QR code data
            now (datetime): Validation time, defaults to the current time

        Returns:
            dict: Validation result with the credential when valid
        """
        now = now or datetime.now()

        if not payload or not payload.startswith(f"{self.PAYLOAD_PREFIX}:"):
            return {
                'valid': False,
                'error': 'Invalid QR code format',
                'error_type': 'format_error'
            }

        credential = self.db.get_credential_by_payload(payload)
        if credential is None:
            return {
                'valid': False,
                'error': 'Unknown QR code',
                'error_type': 'not_found'
            }

        if credential.used:
            return {
                'valid': False,
                'error': 'QR code has already been used',
                'error_type': 'used',
                'credential': credential
            }

        if credential.is_expired(now):
            return {
                'valid': False,
                'error': 'QR code has expired',
                'error_type': 'expired',
                'credential': credential
            }

        return {
            'valid': True,
            'credential': credential,
            'schedule_id': credential.schedule_id
        }

    def consume_credential(self, payload: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Validate a payload and mark its credential used.

        Two concurrent scans of the same code cannot both succeed: the used
        flag is only set on a row that is still unused.
        """
        result = self.validate_credential(payload, now)
        if not result['valid']:
            return result

        credential = result['credential']
        if not self.db.mark_credential_used(credential.id):
            return {
                'valid': False,
                'error': 'QR code has already been used',
                'error_type': 'used',
                'credential': credential
            }

        self.logger.info(f"QR code {credential.id} consumed for schedule {credential.schedule_id}")
        return result
