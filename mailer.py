from flask import current_app
from flask_mail import Message
from markupsafe import escape
from extensions import mail
import logging

logger = logging.getLogger(__name__)


def send_email(to, subject, text, html=None):
    """
    寄信

    寄信失敗不影響主要流程,只回傳 False 並記錄錯誤
    """
    try:
        msg = Message(
            subject=subject,
            recipients=[to],
            body=text,
            html=html,
            sender=current_app.config.get('MAIL_DEFAULT_SENDER')
        )
        mail.send(msg)
        logger.info(f"Email sent to {to}: {subject}")
        return True
    except Exception as e:
        logger.error(f"Error sending email to {to}: {str(e)}", exc_info=True)
        return False


def _link_email_body(greeting, action, button_label, link):
    text = (
        f"{greeting}\n\n"
        f"Click the link below to verify your email and {action}.\n"
        f"This link will expire soon and can be used once.\n\n{link}"
    )
    # greeting 裡有使用者自己設定的名字
    greeting, link = escape(greeting), escape(link)
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color:#202124;">
      <p>{greeting}</p>
      <p>Click the button below to verify your email and {action}:</p>
      <p>
        <a href="{link}" style="display:inline-block;padding:12px 18px;background:#1976d2;color:#ffffff;text-decoration:none;border-radius:6px;">
          {button_label}
        </a>
      </p>
      <p>If the button doesn't work, copy and paste this link into your browser:</p>
      <p><a href="{link}">{link}</a></p>
      <p>This link will expire soon and can be used once.</p>
    </div>
    """
    return text, html


def send_registration_magic_link(to, link, name=None):
    greeting = f"Hi {name}," if name else "Hi,"
    text, html = _link_email_body(greeting, 'complete registration', 'Verify and Sign In', link)
    return send_email(to, 'Complete your registration', text, html)


def send_password_reset_link(to, link, name=None):
    greeting = f"Hi {name}," if name else "Hi,"
    text, html = _link_email_body(greeting, 'reset your password', 'Verify and Reset Password', link)
    return send_email(to, 'Reset your password', text, html)
