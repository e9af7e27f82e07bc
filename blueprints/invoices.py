import logging
from io import BytesIO

from flask import Blueprint, Response, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from generators.einvoice import (
    EInvoiceError,
    ValidationError,
    generate_facturx_pdf,
    generate_facturx_xml,
)
from models import Invoice

logger = logging.getLogger(__name__)

invoices_bp = Blueprint('invoices', __name__)


def _load_invoice(invoice_id):
    """Invoice of the logged-in user, or None (other users' invoices included)."""
    return Invoice.query.filter_by(id=invoice_id, user_id=current_user.id).first()


def _not_found():
    return jsonify({'error': 'Facture non trouvée'}), 404


def _extract_records(invoice):
    """Plain records for the e-invoice pipeline: (invoice, lines, seller)."""
    profile = current_user.company_profile
    seller = profile.to_record() if profile else {'account_email': current_user.email}
    return invoice.to_record(), [item.to_record() for item in invoice.items], seller


def _lines(text):
    return [l.strip() for l in (text or '').split('\n') if l.strip()]


def _render_base_pdf(invoice_record, line_records, seller):
    """Visual invoice rendered with reportlab (no compliance data yet)."""
    from generators.facture import build_facture_pdf

    issuer_name = seller.get('company_name') or seller.get('full_name') or 'Mon Entreprise'
    issuer_lines = _lines(seller.get('address'))
    issuer_lines += [v for v in (seller.get('phone'), seller.get('email')) if v]

    legal_lines = []
    if seller.get('siret'):
        legal_lines.append(f"SIRET : {seller['siret']}")
    if seller.get('vat_number'):
        legal_lines.append(f"TVA intracommunautaire : {seller['vat_number']}")
    bank_lines = []
    if seller.get('iban'):
        bank_lines.append(f"IBAN : {seller['iban']}")
    if seller.get('bic'):
        bank_lines.append(f"BIC : {seller['bic']}")

    recipient = [invoice_record.get('client_name') or 'Client']
    recipient += _lines(invoice_record.get('client_address'))

    default_rate = invoice_record.get('tax_rate') or 0
    lines = []
    for item in line_records:
        quantity = item.get('quantity') or 0
        unit_price = item.get('unit_price') or 0
        lines.append({
            'description': item.get('description'),
            'quantity': quantity,
            'unit_price': unit_price,
            'vat_rate': item['vat_rate'] if item.get('vat_rate') is not None else default_rate,
            'total': quantity * unit_price,
        })

    return build_facture_pdf(
        issuer_name=issuer_name,
        issuer_lines=issuer_lines,
        legal_lines=legal_lines,
        bank_lines=bank_lines,
        recipient_lines=recipient,
        invoice_number=invoice_record.get('invoice_number') or '',
        issue_date=invoice_record.get('issue_date'),
        due_date=invoice_record.get('due_date'),
        lines=lines,
        subtotal=invoice_record.get('subtotal') or 0,
        tax_amount=invoice_record.get('tax_amount') or 0,
        total=invoice_record.get('total') or 0,
        payment_terms=invoice_record.get('payment_terms'),
        notes=invoice_record.get('notes'),
    )


def _requested_profile():
    return request.args.get('profile') or current_app.config['FACTURX_PROFILE']


def _attachment(response, filename):
    response.headers['Content-Disposition'] = f'attachment; filename="{filename}"'
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    response.headers['Pragma'] = 'no-cache'
    response.headers['Expires'] = '0'
    return response


def _send_pdf_response(document):
    """Send the Factur-X PDF as a download with no-cache headers."""
    response = send_file(
        BytesIO(document.content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=document.filename,
        max_age=0,
    )
    response.headers['X-Factur-X'] = document.profile.value
    return _attachment(response, document.filename)


@invoices_bp.errorhandler(EInvoiceError)
def handle_einvoice_error(exc):
    if isinstance(exc, ValidationError):
        logger.warning('Factur-X generation refused (%s): %s', exc.code, exc.message)
    else:
        logger.error('Factur-X generation failed (%s): %s', exc.code, exc.message)
    return jsonify({
        'error': 'Erreur lors de la génération de la facture Factur-X',
        'code': exc.code,
        'details': exc.message,
    }), 500


@invoices_bp.route('/<int:invoice_id>/facturx-pdf')
@login_required
def facturx_pdf(invoice_id):
    """Factur-X PDF/A-3 (visual invoice with factur-x.xml attached)"""
    invoice = _load_invoice(invoice_id)
    if invoice is None:
        return _not_found()

    invoice_record, line_records, seller = _extract_records(invoice)
    base_pdf = _render_base_pdf(invoice_record, line_records, seller)
    document = generate_facturx_pdf(
        base_pdf,
        invoice_record,
        line_records,
        seller,
        profile=_requested_profile(),
        validate_xsd=current_app.config['FACTURX_CHECK_XSD'],
        lang=current_app.config['FACTURX_LANG'],
        producer=current_app.config['FACTURX_PRODUCER'],
    )
    return _send_pdf_response(document)


@invoices_bp.route('/<int:invoice_id>/facturx')
@login_required
def facturx_xml(invoice_id):
    """Factur-X XML alone, as JSON or (format=download) as a file"""
    invoice = _load_invoice(invoice_id)
    if invoice is None:
        return _not_found()

    invoice_record, line_records, seller = _extract_records(invoice)
    payload = generate_facturx_xml(
        invoice_record,
        line_records,
        seller,
        profile=_requested_profile(),
        validate_xsd=current_app.config['FACTURX_CHECK_XSD'],
    )

    if request.args.get('format') == 'download':
        response = Response(payload.content, mimetype='application/xml')
        return _attachment(response, f'facture-{payload.document_number}-facturx.xml')

    return jsonify({
        'success': True,
        'invoice_number': payload.document_number,
        'profile': payload.profile.value,
        'xml': payload.content.decode('utf-8'),
    })
