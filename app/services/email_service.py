"""
AWS SES Email Service: the out-of-band dispatcher for verification codes.

Handles email formatting and AWS SES integration. Delivery failures are
reported to the caller (False), never swallowed silently, so the
verification channel can withdraw a code that was not delivered.
"""

import logging
from typing import Optional
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from app.core.config import settings
from app.models.verification_code import VerificationPurpose

logger = logging.getLogger(__name__)

_SUBJECTS = {
    VerificationPurpose.LOGIN_2FA: "Your LifeVault sign-in code",
    VerificationPurpose.REGISTRATION: "Verify your email - LifeVault",
    VerificationPurpose.PASSWORD_RESET: "Reset your LifeVault password",
    VerificationPurpose.PIN_RESET: "Reset your LifeVault vault PIN",
}

_INTROS = {
    VerificationPurpose.LOGIN_2FA: "Someone is signing in to your LifeVault account from a new device. If it was you, enter this code:",
    VerificationPurpose.REGISTRATION: "Thanks for creating a LifeVault account! To finish signing up, enter this code:",
    VerificationPurpose.PASSWORD_RESET: "We received a request to reset your LifeVault password. If it was you, enter this code:",
    VerificationPurpose.PIN_RESET: "We received a request to reset the PIN that locks your vault. If it was you, enter this code:",
}


class EmailService:
    """
    Service for sending emails via AWS SES.

    Supports both development (sandbox) and production modes.
    """

    def __init__(self):
        """Initialize AWS SES client"""
        session_kwargs = {
            'region_name': settings.AWS_REGION,
        }

        # Add credentials if provided (otherwise uses IAM role)
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
            session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

        self.ses_client = boto3.client('ses', **session_kwargs)

    def send_verification_email(
        self,
        to_email: str,
        verification_code: str,
        purpose: VerificationPurpose,
        user_name: Optional[str] = None
    ) -> bool:
        """
        Send a verification code email.

        Args:
            to_email: Recipient email address
            verification_code: 6-digit verification code
            purpose: Why the code was issued (login-2fa or registration)
            user_name: Optional display name for personalization

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        subject = _SUBJECTS[purpose]
        html_body = self._build_verification_html(verification_code, purpose, user_name)
        text_body = self._build_verification_text(verification_code, purpose, user_name)

        try:
            response = self.ses_client.send_email(
                Source=f"{settings.AWS_SES_FROM_NAME} <{settings.AWS_SES_FROM_EMAIL}>",
                Destination={'ToAddresses': [to_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'},
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"Verification email ({purpose.value}) sent to {to_email} (MessageId: {message_id})")
            return True

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return False

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return False

    def _build_verification_html(
        self,
        code: str,
        purpose: VerificationPurpose,
        user_name: Optional[str] = None
    ) -> str:
        greeting = f"Hi {user_name}," if user_name else "Hi there,"
        minutes = settings.VERIFICATION_CODE_EXPIRATION_MINUTES

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{_SUBJECTS[purpose]}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f4f4f4;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td align="center" style="padding: 40px 0;">
                <table role="presentation" style="width: 600px; background-color: #ffffff; border-radius: 8px;">
                    <tr>
                        <td style="padding: 40px;">
                            <p style="margin: 0 0 20px 0; color: #666666; font-size: 16px;">{greeting}</p>
                            <p style="margin: 0 0 30px 0; color: #666666; font-size: 16px;">{_INTROS[purpose]}</p>
                            <div style="background-color: #f8f9fa; border-radius: 8px; padding: 30px; text-align: center;">
                                <div style="font-size: 36px; font-weight: 700; letter-spacing: 8px; color: #4F46E5; font-family: 'Courier New', monospace;">
                                    {code}
                                </div>
                            </div>
                            <p style="margin: 30px 0 0 0; color: #666666; font-size: 14px;">
                                This code will expire in <strong>{minutes} minutes</strong>.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""

    def _build_verification_text(
        self,
        code: str,
        purpose: VerificationPurpose,
        user_name: Optional[str] = None
    ) -> str:
        greeting = f"Hi {user_name}," if user_name else "Hi there,"
        minutes = settings.VERIFICATION_CODE_EXPIRATION_MINUTES

        return f"""{greeting}

{_INTROS[purpose]}

{code}

This code will expire in {minutes} minutes.

If you didn't request this code, you can safely ignore this email.

---
LifeVault
"""


# Singleton instance
email_service = EmailService()
