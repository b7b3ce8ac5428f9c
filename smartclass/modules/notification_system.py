"""
Notification System Module - Smart Class QR Scheduler

This module delivers class access QR codes to professors by email. Each
message carries the class details (subject, classroom, day, time span), the
QR code as an inline image, and a note that the code is valid for a limited
time and for a single use.

Features:
- HTML email rendering from a Jinja2 template
- Inline QR code image attachment
- SMTP delivery with optional STARTTLS and login
- Suppressed-send mode that keeps messages in an in-memory outbox
"""

import smtplib
import ssl
import logging
import threading
from datetime import datetime
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import base64
from typing import Any, Dict, List, Optional

from jinja2 import Template, TemplateError

from smartclass.modules.errors import DeliveryFailed
from smartclass.modules.models import Credential, DeliveryRequest


class NotificationSystem:
    """
    Email notifier for class QR codes.

    send_class_qr does not retry; a failed send raises DeliveryFailed and the
    caller decides what to do with the already issued credential.
    """

    QR_IMAGE_CID = 'class-qr-code'

    def __init__(self, qr_generator, email_config: Optional[Dict[str, Any]] = None,
                 validity_hours: int = 1, suppress_send: bool = False,
                 system_name: str = 'Smart Class Management System'):
        """
        Initialize the notification system.

        Args:
            qr_generator: Renders credential payloads as QR images
            email_config (dict): smtp_server, smtp_port, username, password,
                use_tls and sender
            validity_hours (int): Validity window quoted in the message
            suppress_send (bool): Keep messages in the outbox instead of sending
            system_name (str): Name shown in the message footer
        """
        self.logger = logging.getLogger(__name__)
        self.qr_generator = qr_generator
        self.validity_hours = validity_hours
        self.suppress_send = suppress_send
        self.system_name = system_name

        self.email_config = {
            'smtp_server': 'localhost',
            'smtp_port': 587,
            'username': '',
            'password': '',
            'use_tls': True,
            'sender': 'noreply@smartclass.local',
            'timeout': 30
        }
        if email_config:
            self.email_config.update(email_config)

        self.template = Template(self._get_class_qr_template(), autoescape=True)

        # Messages kept when sending is suppressed
        self.outbox: List[MIMEMultipart] = []
        self._outbox_lock = threading.Lock()

        self.logger.info("Notification system initialized")

    def send_class_qr(self, credential: Credential, request: DeliveryRequest) -> None:
        """
        Email a class access QR code to a professor.

        Args:
            credential (Credential): Issued credential to deliver
            request (DeliveryRequest): Recipient and class details

        Raises:
            DeliveryFailed: If the message could not be rendered or sent
        """
        if not request.recipient_email:
            raise DeliveryFailed(f"No recipient email for schedule {request.schedule_id}")

        try:
            msg = self._build_message(credential, request)
        except (TemplateError, ValueError) as e:
            self.logger.error(f"Failed to render QR email for schedule {request.schedule_id}: {str(e)}")
            raise DeliveryFailed(f"Failed to render QR email: {e}") from e

        if self.suppress_send:
            with self._outbox_lock:
                self.outbox.append(msg)
            self.logger.info(f"Email sending suppressed; QR code for {request.subject} "
                             f"kept in outbox for {request.recipient_email}")
            return

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send QR email to {request.recipient_email}: {str(e)}")
            raise DeliveryFailed(f"Email sending failed: {e}") from e

        self.logger.info(f"QR code sent successfully for {request.subject} to {request.recipient_email}")

    def _build_message(self, credential: Credential, request: DeliveryRequest) -> MIMEMultipart:
        image_base64 = self.qr_generator.render_qr_image(credential.payload)

        msg = MIMEMultipart('related')
        msg['From'] = self.email_config['sender']
        msg['To'] = request.recipient_email
        msg['Subject'] = f"Class Access QR Code - {request.subject}"

        body = self.template.render(
            request=request.to_dict(),
            credential=credential.to_dict(),
            qr_image_cid=self.QR_IMAGE_CID,
            validity_hours=self.validity_hours,
            system_name=self.system_name,
            generated_at=datetime.now().strftime('%Y-%m-%d %H:%M')
        )
        msg.attach(MIMEText(body, 'html'))

        image = MIMEImage(base64.b64decode(image_base64), _subtype='png')
        image.add_header('Content-ID', f"<{self.QR_IMAGE_CID}>")
        image.add_header('Content-Disposition', 'inline', filename=f"class_qr_{request.schedule_id}.png")
        msg.attach(image)

        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        config = self.email_config
        with smtplib.SMTP(config['smtp_server'], config['smtp_port'], timeout=config['timeout']) as server:
            if config['use_tls']:
                context = ssl.create_default_context()
                server.starttls(context=context)

            if config['username']:
                server.login(config['username'], config['password'])
            server.send_message(msg)

    def get_outbox(self) -> List[MIMEMultipart]:
        with self._outbox_lock:
            return list(self.outbox)

    def clear_outbox(self) -> None:
        with self._outbox_lock:
            self.outbox.clear()

    def _get_class_qr_template(self) -> str:
        """Get the class access QR code email template."""
        return """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="color: #0ea5e9;">Your Class Access QR Code</h1>

            <p>Hello {{ request.recipient_name }},</p>

            <p>Your class is starting soon! Here are the details:</p>

            <div style="background-color: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
                <p><strong>Subject:</strong> {{ request.subject }}</p>
                <p><strong>Classroom:</strong> {{ request.classroom_name }}</p>
                <p><strong>Day:</strong> {{ request.day }}</p>
                <p><strong>Time:</strong> {{ request.start_time }} - {{ request.end_time }}</p>
            </div>

            <p>Use this QR code to access the classroom:</p>

            <div style="text-align: center; margin: 30px 0;">
                <img src="cid:{{ qr_image_cid }}" alt="Class Access QR Code"
                     style="max-width: 300px; border: 2px solid #0ea5e9; border-radius: 8px;"/>
            </div>

            <p style="color: #6b7280; font-size: 14px;">
                <strong>Note:</strong> This QR code is valid for {{ validity_hours }} hour{{ 's' if validity_hours != 1 else '' }} and is for single use only.
            </p>

            <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 30px 0;"/>

            <p style="color: #9ca3af; font-size: 12px;">
                This is an automated message from {{ system_name }} ({{ generated_at }}).
            </p>
        </div>
        """
