# certificate_manager.py
import ssl
import logging
import ipaddress
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from edgeroute.core.config_manager import get_app_data_dir

logger = logging.getLogger(__name__)


class CertificateManager:
    """Самоподписанный сертификат для локального HTTPS edge-сервера"""

    def __init__(self, certs_dir: Optional[Path] = None):
        certs_dir = Path(certs_dir) if certs_dir else get_app_data_dir() / "certificates"
        certs_dir.mkdir(parents=True, exist_ok=True)

        self.cert_path = certs_dir / "edge.crt"
        self.key_path = certs_dir / "edge.key"

    def generate_self_signed_certificate(self) -> bool:
        """Генерирует самоподписанный сертификат для localhost"""
        try:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=2048,
            )

            subject = issuer = x509.Name([
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "EdgeRoute"),
                x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
            ])

            now = datetime.now(timezone.utc)
            cert_builder = x509.CertificateBuilder().subject_name(
                subject
            ).issuer_name(
                issuer
            ).public_key(
                private_key.public_key()
            ).serial_number(
                x509.random_serial_number()
            ).not_valid_before(
                now
            ).not_valid_after(
                now + timedelta(days=365)
            ).add_extension(
                x509.SubjectAlternativeName([
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
                ]),
                critical=False
            )

            cert = cert_builder.sign(private_key, hashes.SHA256())

            with open(self.key_path, "wb") as key_file:
                key_file.write(private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.TraditionalOpenSSL,
                    encryption_algorithm=serialization.NoEncryption(),
                ))

            with open(self.cert_path, "wb") as cert_file:
                cert_file.write(cert.public_bytes(encoding=serialization.Encoding.PEM))

            logger.info(f"✅ Самоподписанный сертификат создан: {self.cert_path}")
            return True

        except (OSError, ValueError) as e:
            logger.error(f"❌ Ошибка генерации сертификата: {e}")
            return False

    def check_certificates_exist(self) -> bool:
        """Проверяет существование сертификатов"""
        return self.cert_path.exists() and self.key_path.exists()

    def ensure_certificates_exist(self) -> bool:
        """Убеждается, что сертификаты существуют, и создает их при необходимости"""
        if not self.check_certificates_exist():
            logger.warning("Сертификаты не найдены, генерируем новые...")
            return self.generate_self_signed_certificate()
        return True

    def create_ssl_context(self) -> ssl.SSLContext:
        """SSL контекст для TCPSite"""
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(certfile=str(self.cert_path), keyfile=str(self.key_path))
        return ssl_context

    def get_certificate_info(self) -> dict:
        """Subject, хосты и срок действия сертификата edge"""
        if not self.cert_path.exists():
            return {'error': 'Сертификат не найден'}

        try:
            cert = x509.load_pem_x509_certificate(self.cert_path.read_bytes())
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            return {
                'subject': cert.subject.rfc4514_string(),
                'hosts': san.get_values_for_type(x509.DNSName)
                         + [str(ip) for ip in san.get_values_for_type(x509.IPAddress)],
                'not_valid_after_utc': cert.not_valid_after_utc.isoformat(),
                'serial_number': str(cert.serial_number),
            }
        except (OSError, ValueError, x509.ExtensionNotFound) as e:
            logger.error(f"Ошибка чтения сертификата: {e}")
            return {'error': str(e)}

    def get_certificate_days_remaining(self) -> int:
        """Возвращает количество дней до истечения срока действия сертификата"""
        if not self.cert_path.exists():
            return -1

        try:
            cert = x509.load_pem_x509_certificate(self.cert_path.read_bytes())
            remaining = cert.not_valid_after_utc - datetime.now(timezone.utc)
            return max(0, remaining.days)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка проверки срока действия сертификата: {e}")
            return -1
