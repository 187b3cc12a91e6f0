"""
Customer-facing message text.

Chat formatting uses ``*bold*`` markers; the gateway renders them.
"""

from datetime import datetime
from typing import Optional

from .catalog import get_package
from .models.order import Order, OrderStatus


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%d %b %Y") if value else "-"


def _amount(currency: str, value: int) -> str:
    return f"{currency} {value:,}".replace(",", ".")


def _package_label(package_id: str) -> str:
    package = get_package(package_id)
    return f"{package.emoji} {package.name}" if package else package_id


STATUS_FOLLOW_UP = {
    OrderStatus.CONFIRMED: "✅ Your order is confirmed. Please complete the payment as instructed by the admin.",
    OrderStatus.PROCESSING: "🔄 Your server is being set up. Access details follow once it is ready.",
    OrderStatus.COMPLETED: "🎉 Your server is ready to use. Access details have been sent.",
    OrderStatus.CANCELLED: "❌ Your order has been cancelled. Contact the admin with any questions.",
    OrderStatus.REFUNDED: "💰 Your refund has been processed. Funds arrive within 1-3 business days.",
}


def order_created(order: Order) -> str:
    return (
        "📝 *Order Created*\n\n"
        f"🆔 Order ID: {order.id}\n"
        f"📦 Package: {_package_label(order.item.package_id)}\n"
        f"⏰ Duration: {order.item.duration} month(s)\n"
        f"💰 Total: {_amount(order.currency, order.total_amount)}\n"
        f"📅 Date: {_date(order.created_at)}\n\n"
        f"{order.status.icon} Status: {order.status.label}\n\n"
        "💡 Keep this order ID to track your order."
    )


def status_changed(order: Order) -> str:
    lines = [
        f"{order.status.icon} *Order Status Updated*",
        "",
        f"🆔 Order ID: {order.id}",
        f"📦 Package: {_package_label(order.item.package_id)}",
        f"🔄 Status: {order.status.label}",
        f"📅 Updated: {order.updated_at.strftime('%d %b %Y %H:%M')}",
    ]
    follow_up = STATUS_FOLLOW_UP.get(order.status)
    if follow_up:
        lines += ["", follow_up]
    if order.notes:
        lines += ["", f"📝 Notes: {order.notes}"]
    return "\n".join(lines)


def server_ready(order: Order, credentials) -> str:
    specs = order.item.specifications
    return (
        "🎉 *Your Server Is Ready!*\n\n"
        f"🆔 Order ID: {order.id}\n"
        f"📦 Package: {_package_label(order.item.package_id)}\n"
        f"🖥️ Server: {credentials.server_name}\n\n"
        "🔐 *Panel Login:*\n"
        f"🌐 URL: {credentials.panel_url}\n"
        f"👤 Username: {credentials.username}\n"
        f"🔑 Password: {credentials.password}\n"
        f"📧 Email: {credentials.email}\n\n"
        "🎮 *Server:*\n"
        f"🆔 Server ID: {credentials.server_id}\n"
        f"💾 RAM: {specs.ram}\n"
        f"🖥️ CPU: {specs.cpu}\n"
        f"💽 Storage: {specs.storage}\n\n"
        "⚠️ Keep these details safe and do not share your password."
    )


def provisioning_delayed(order: Order) -> str:
    return (
        "⚠️ *Server Setup Delayed*\n\n"
        f"🆔 Order ID: {order.id}\n"
        f"📦 Package: {_package_label(order.item.package_id)}\n\n"
        "🔄 An admin is finishing the setup of your server by hand.\n"
        "📧 Access details will be sent as soon as it is ready."
    )


def expiry_warning(package_id: str, days_left: int, expiry: Optional[datetime]) -> str:
    return (
        "⚠️ *Server Expiry Reminder*\n\n"
        f"🖥️ Server: {package_id}\n"
        f"📅 Expires in: *{days_left} day(s)*\n"
        f"📆 Expiry date: {_date(expiry)}\n\n"
        "💡 Please renew your subscription before the server is suspended automatically.\n"
        "📞 Contact the admin to renew."
    )


def expired_notice(package_id: str, expiry: Optional[datetime]) -> str:
    return (
        "❌ *Your Server Has Expired*\n\n"
        f"🖥️ Server: {package_id}\n"
        f"📅 Expired on: {_date(expiry)}\n"
        "⏸️ The server will be suspended within 24 hours unless renewed.\n\n"
        "💡 Contact the admin to renew your subscription."
    )


def suspension_notice(package_id: str, suspended_on: datetime) -> str:
    return (
        "⏸️ *Server Suspended Automatically*\n\n"
        f"🖥️ Server: {package_id}\n"
        f"📅 Suspended on: {_date(suspended_on)}\n"
        "💡 Contact the admin to reactivate your server."
    )
