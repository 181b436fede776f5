"""
Streamlit Frontend for LEDESC

The screen people open to log a lunch, check how much of this month's
gastronomic benefit is left, and back their data up.

DESIGN PRINCIPLES:
1. Every action goes through BenefitSession; the UI holds no state of its own
2. Forms are validated before anything is written, errors shown per field
3. Every outcome is shown as a toast or, for failures that matter, a banner
4. Works signed out (data on this machine) and signed in (synced to the cloud)

The session lives on a background event loop so cloud listeners keep
delivering between reruns.
"""

import asyncio
import threading
from datetime import datetime, time

import streamlit as st

from ledesc.config import validate_all_settings
from ledesc.finance import summarize_month
from ledesc.models.benefit import ContactReason, Identity
from ledesc.models.notification import NotificationSeverity
from ledesc.notifications import NotificationInbox
from ledesc.session import BenefitSession, create_session


# Page configuration
st.set_page_config(
    page_title="LEDESC",
    page_icon="🍽️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS for better UX
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .info-box {
        padding: 20px;
        background-color: #cce5ff;
        border-radius: 10px;
        border-left: 5px solid #004085;
        margin: 10px 0;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)

TOAST_ICONS = {
    NotificationSeverity.INFO: "ℹ️",
    NotificationSeverity.SUCCESS: "✅",
    NotificationSeverity.WARNING: "⚠️",
    NotificationSeverity.ERROR: "❌",
}


class LoopThread:
    """An event loop running forever in a daemon thread."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self._thread.start()

    def run(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()


@st.cache_resource
def get_loop() -> LoopThread:
    return LoopThread()


def run_async(coro):
    """Helper to run session coroutines from Streamlit callbacks."""
    return get_loop().run(coro)


def get_session() -> tuple[BenefitSession, NotificationInbox]:
    """Get or create this browser session's BenefitSession."""
    if "ledesc_session" not in st.session_state:
        inbox = NotificationInbox()
        session = create_session(inbox)
        run_async(session.start())
        st.session_state.ledesc_session = session
        st.session_state.ledesc_inbox = inbox
    return st.session_state.ledesc_session, st.session_state.ledesc_inbox


def money(value) -> str:
    return f"${value:,.2f}"


def show_notifications(inbox: NotificationInbox):
    for note in inbox.drain():
        st.toast(f"**{note.title}**: {note.description}", icon=TOAST_ICONS[note.severity])
    for note in inbox.banners:
        col1, col2 = st.columns([6, 1])
        with col1:
            st.error(f"**{note.title}**\n\n{note.description}")
        with col2:
            if st.button("Cerrar", key=f"dismiss_{note.notification_id}"):
                inbox.dismiss(note)
                st.rerun()


def show_field_errors(result):
    for field, message in result.errors_by_field().items():
        st.error(f"{field}: {message}")
    for issue in result.issues:
        if issue.severity == "warning":
            st.warning(issue.message)


def main():
    """Main application entry point."""
    session, inbox = get_session()

    # Sidebar navigation
    st.sidebar.title("🍽️ LEDESC")
    st.sidebar.caption("Tu beneficio gastronómico, bajo control")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Ir a:",
        [
            "📊 Resumen",
            "➕ Agregar Compra",
            "🧾 Historial",
            "🏪 Comercios",
            "⚙️ Configuración",
            "💾 Respaldo",
            "✉️ Contacto",
        ],
        index=0,
    )

    st.sidebar.markdown("---")
    render_account(session)

    show_notifications(inbox)

    if not session.is_ready:
        if session.error:
            st.stop()
        st.info("Cargando tus datos...")
        if st.button("Actualizar"):
            st.rerun()
        st.stop()

    # Route to appropriate page
    if page == "📊 Resumen":
        render_dashboard_page(session)
    elif page == "➕ Agregar Compra":
        render_add_purchase_page(session)
    elif page == "🧾 Historial":
        render_history_page(session)
    elif page == "🏪 Comercios":
        render_merchants_page(session)
    elif page == "⚙️ Configuración":
        render_settings_page(session)
    elif page == "💾 Respaldo":
        render_backup_page(session)
    elif page == "✉️ Contacto":
        render_contact_page(session)


def render_account(session: BenefitSession):
    """Sign-in box in the sidebar."""
    identity = session.identity
    if identity:
        st.sidebar.success(f"Conectado como {identity.display_name or identity.email}")
        with st.sidebar.expander("Token de Google"):
            token = st.text_input("Nuevo access token", type="password", key="token_refresh")
            if st.button("Actualizar token") and token:
                session.update_access_token(token)
                st.rerun()
        if st.sidebar.button("Cerrar sesión"):
            run_async(session.sign_out())
            st.rerun()
        return

    st.sidebar.info("Modo local: tus datos se guardan solo en este equipo.")
    with st.sidebar.expander("Iniciar sesión"):
        with st.form("sign_in"):
            uid = st.text_input("ID de usuario")
            email = st.text_input("Email")
            name = st.text_input("Nombre (opcional)")
            token = st.text_input("Access token de Google (opcional)", type="password")
            submitted = st.form_submit_button("Iniciar sesión")
        if submitted:
            if not uid or not email:
                st.error("El ID de usuario y el email son requeridos.")
            else:
                run_async(session.sign_in(Identity(
                    uid=uid,
                    email=email,
                    display_name=name or None,
                    access_token=token or None,
                )))
                st.rerun()


def render_dashboard_page(session: BenefitSession):
    """Render the monthly usage summary."""
    st.title("📊 Resumen del Mes")
    state = session.state
    usage = summarize_month(state.settings, state.purchases)

    col1, col2, col3 = st.columns(3)
    col1.metric("Beneficio mensual", money(usage.monthly_allowance))
    col2.metric("Gastado este mes", money(usage.spent))
    col3.metric("Disponible", money(usage.remaining_balance))

    progress = min(float(usage.percentage_used) / 100, 1.0)
    st.progress(progress, text=f"{usage.percentage_used}% utilizado")
    if usage.percentage_used >= state.settings.alert_threshold_percentage:
        st.warning(
            f"Superaste el umbral de alerta del {state.settings.alert_threshold_percentage}%."
        )

    st.markdown(f"""
    <div class="info-box">
        <p>Quedan <strong>{usage.days_remaining}</strong> días en el mes.</p>
        <p>Descuento actual: <strong>{state.settings.discount_percentage}%</strong></p>
    </div>
    """, unsafe_allow_html=True)

    st.markdown("### Últimas compras")
    recent = state.purchases[:5]
    if not recent:
        st.info("Todavía no registraste compras. Usa 'Agregar Compra' para empezar.")
    for p in recent:
        st.markdown(
            f"**{p.merchant_name}** · {p.date:%d/%m/%Y %H:%M} · "
            f"{money(p.amount)} → {money(p.final_amount)}"
        )


def purchase_form(key: str, session: BenefitSession, defaults=None):
    """Render the purchase form. Returns the raw form data when submitted."""
    merchants = session.state.merchants
    with st.form(key, clear_on_submit=defaults is None):
        amount = st.number_input(
            "Monto original ($)",
            min_value=0.0,
            step=100.0,
            value=float(defaults.amount) if defaults else 0.0,
        )
        col1, col2 = st.columns(2)
        with col1:
            day = st.date_input("Fecha", value=defaults.date.date() if defaults else datetime.now().date())
        with col2:
            moment = st.time_input("Hora", value=defaults.date.time() if defaults else datetime.now().time())

        known = [""] + [f"{m.name} | {m.location or ''}" for m in merchants]
        picked = st.selectbox("Comercio guardado (opcional)", known)
        name = st.text_input("Comercio", value=defaults.merchant_name if defaults else "")
        location = st.text_input(
            "Ubicación (opcional)",
            value=(defaults.merchant_location or "") if defaults else "",
        )
        description = st.text_area(
            "Descripción (opcional)",
            value=(defaults.description or "") if defaults else "",
        )
        submitted = st.form_submit_button("Guardar", type="primary")

    if not submitted:
        return None
    if picked:
        picked_name, _, picked_location = picked.partition(" | ")
        name = name or picked_name
        location = location or picked_location
    return {
        "amount": str(amount),
        "date": datetime.combine(day, moment or time()),
        "merchant_name": name,
        "merchant_location": location,
        "description": description,
    }


def render_add_purchase_page(session: BenefitSession):
    """Render the add-purchase page."""
    st.title("➕ Agregar Compra")
    pct = session.state.settings.discount_percentage
    st.markdown(f"Se aplicará un descuento del **{pct}%** sobre el monto original.")

    data = purchase_form("add_purchase", session)
    if data is None:
        return
    result = session.validator().validate_purchase(data)
    show_field_errors(result)
    if result.is_valid:
        run_async(session.add_purchase(result.value))
        st.rerun()


def render_history_page(session: BenefitSession):
    """Render the purchase history with edit and delete."""
    st.title("🧾 Historial de Compras")
    purchases = session.state.purchases
    if not purchases:
        st.info("No hay compras registradas.")
        return

    for p in purchases:
        with st.expander(f"{p.date:%d/%m/%Y %H:%M} · {p.merchant_name} · {money(p.final_amount)}"):
            st.markdown(
                f"Monto original: **{money(p.amount)}** · "
                f"Descuento: **{money(p.discount_applied)}** · "
                f"Final: **{money(p.final_amount)}**"
            )
            if p.merchant_location:
                st.markdown(f"Ubicación: {p.merchant_location}")
            if p.description:
                st.markdown(f"Descripción: {p.description}")

            data = purchase_form(f"edit_{p.id}", session, defaults=p)
            if data is not None:
                result = session.validator().validate_purchase(data)
                show_field_errors(result)
                if result.is_valid:
                    run_async(session.edit_purchase(p.id, result.value))
                    st.rerun()

            if st.button("🗑️ Eliminar", key=f"delete_{p.id}"):
                run_async(session.delete_purchase(p.id))
                st.rerun()


def render_merchants_page(session: BenefitSession):
    """Render the merchants list and the add-merchant form."""
    st.title("🏪 Comercios")

    with st.form("add_merchant", clear_on_submit=True):
        name = st.text_input("Nombre")
        location = st.text_input("Ubicación (opcional)")
        submitted = st.form_submit_button("Agregar comercio")
    if submitted:
        result = session.validator().validate_merchant({"name": name, "location": location})
        show_field_errors(result)
        if result.is_valid:
            run_async(session.add_merchant(result.value))
            st.rerun()

    st.markdown("---")
    merchants = session.state.merchants
    if not merchants:
        st.info("Todavía no hay comercios guardados.")
    for m in merchants:
        st.markdown(f"**{m.name}**" + (f" · {m.location}" if m.location else ""))


def render_settings_page(session: BenefitSession):
    """Render the benefit settings form."""
    st.title("⚙️ Configuración")
    settings = session.state.settings

    with st.form("settings"):
        allowance = st.number_input(
            "Beneficio mensual ($)", min_value=0.0, step=500.0,
            value=float(settings.monthly_allowance),
        )
        discount = st.number_input(
            "Porcentaje de descuento (%)", min_value=0.0, max_value=100.0,
            value=float(settings.discount_percentage),
        )
        threshold = st.number_input(
            "Umbral de alerta (%)", min_value=0.0, max_value=100.0,
            value=float(settings.alert_threshold_percentage),
        )
        weekly = st.checkbox("Recordatorios semanales", value=settings.enable_weekly_reminders)
        end_of_month = st.checkbox(
            "Recordatorio de fin de mes", value=settings.enable_end_of_month_reminder
        )
        days_before = st.slider(
            "Días antes de fin de mes", min_value=1, max_value=15,
            value=settings.days_before_end_of_month_to_remind,
        )
        auto_backup = st.checkbox(
            "Respaldar automáticamente en Google Drive", value=settings.auto_backup_to_drive
        )
        submitted = st.form_submit_button("Guardar configuración", type="primary")

    if submitted:
        changes = {
            "monthly_allowance": str(allowance),
            "discount_percentage": str(discount),
            "alert_threshold_percentage": str(threshold),
            "enable_weekly_reminders": weekly,
            "enable_end_of_month_reminder": end_of_month,
            "days_before_end_of_month_to_remind": days_before,
            "auto_backup_to_drive": auto_backup,
        }
        result = session.validator().validate_settings(changes)
        show_field_errors(result)
        if result.is_valid:
            run_async(session.update_settings(changes))
            st.rerun()

    st.markdown("---")
    st.markdown("### Estado de la Conexión")
    status = validate_all_settings()
    services = [
        ("Aplicación", "app"),
        ("Firestore (nube)", "firestore"),
        ("Google Drive (respaldo)", "drive"),
        ("Correo (contacto)", "mail"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name}")
        else:
            st.error(f"❌ {name} - {status.get(f'{key}_error', 'No configurado')}")
    if not status.get("mail_configured"):
        st.caption("El formulario de contacto necesita MAIL_API_KEY y MAIL_DESTINATION.")


def render_backup_page(session: BenefitSession):
    """Render export, import and cloud backup actions."""
    st.title("💾 Respaldo")
    settings = session.state.settings
    if settings.last_backup_timestamp:
        st.caption(f"Último respaldo: {settings.last_backup_timestamp:%d/%m/%Y %H:%M}")

    st.markdown("### Exportar")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Exportar CSV"):
            export = run_async(session.export_csv())
            if export:
                st.download_button("Descargar CSV", export.content, export.filename, export.mime_type)
    with col2:
        if st.button("Exportar Excel"):
            export = run_async(session.export_workbook())
            if export:
                st.download_button("Descargar Excel", export.content, export.filename, export.mime_type)

    st.markdown("### Restaurar desde Excel")
    st.warning("La restauración reemplaza todas tus compras y comercios actuales.")
    uploaded = st.file_uploader("Archivo de respaldo (.xlsx)", type=["xlsx"])
    if uploaded and st.button("Restaurar", type="primary"):
        report = run_async(session.restore_workbook(uploaded.getvalue()))
        if report and report.issues:
            with st.expander(f"Detalle de la importación ({len(report.issues)})"):
                for issue in report.issues:
                    st.markdown(f"- {issue.sheet} fila {issue.row}, {issue.field}: {issue.message}")

    st.markdown("### Google")
    if session.identity is None:
        st.info("Inicia sesión para respaldar en Google Drive o Google Sheets.")
        return
    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("Respaldar en Drive"):
            run_async(session.backup_to_drive())
            st.rerun()
    with col2:
        if st.button("Restaurar desde Drive"):
            run_async(session.restore_from_drive())
            st.rerun()
    with col3:
        if st.button("Respaldar en Sheets"):
            url = run_async(session.backup_to_sheets())
            if url:
                st.markdown(f"[Abrir hoja de cálculo]({url})")


def render_contact_page(session: BenefitSession):
    """Render the contact form."""
    st.title("✉️ Contacto")
    with st.form("contact", clear_on_submit=True):
        reason = st.selectbox(
            "Motivo",
            list(ContactReason),
            format_func=lambda r: r.value.capitalize(),
        )
        email = st.text_input("Tu email", value=session.identity.email if session.identity else "")
        message = st.text_area("Mensaje", max_chars=1000)
        submitted = st.form_submit_button("Enviar", type="primary")

    if submitted:
        result = session.validator().validate_contact(
            {"reason": reason, "email": email, "message": message}
        )
        show_field_errors(result)
        if result.is_valid:
            run_async(session.send_contact(result.value))
            st.rerun()


if __name__ == "__main__":
    main()
