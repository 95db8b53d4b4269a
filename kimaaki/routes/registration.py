# kimaaki/routes/registration.py
import os
import math
import logging
from flask import Blueprint, request

from ..config import (
    ALLOWED_DOCUMENT_EXTENSIONS, COMPANY_DOCUMENTS_BUCKET, DELIVERY_DOCUMENTS_BUCKET,
    MAX_DOCUMENT_SIZE, PLANS,
)
from ..utils.decorators import user_token_required
from ..utils.helpers import (
    allowed_document, first_row, get_supabase, get_user_id_from_token, json_error, json_success,
    upload_public_file, utc_now_iso,
)

logger = logging.getLogger(__name__)

registration_bp = Blueprint('registration', __name__)


def _missing_fields(data, fields):
    return [f for f in fields if not str(data.get(f) or "").strip()]


def _optional_user_id():
    """Cadastros de empresa/entregador aceitam requisição anônima; com token,
    o registro fica ligado ao usuário. Retorna (user_id, error_response)."""
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        return None, None
    user_id, _, error_response = get_user_id_from_token(auth_header)
    return user_id, error_response


def _check_document(file_storage, label):
    """Retorna mensagem de erro ou None."""
    if not file_storage or not file_storage.filename:
        return f"{label} é obrigatório"
    if not allowed_document(file_storage.filename, ALLOWED_DOCUMENT_EXTENSIONS):
        return f"{label}: tipo de arquivo não permitido. Use: {', '.join(sorted(ALLOWED_DOCUMENT_EXTENSIONS))}"
    file_storage.seek(0, os.SEEK_END)
    size = file_storage.tell()
    file_storage.seek(0)
    if size > MAX_DOCUMENT_SIZE:
        return f"{label}: arquivo deve ter no máximo {MAX_DOCUMENT_SIZE // (1024 * 1024)}MB"
    return None


@registration_bp.route('/customer', methods=['POST'])
@user_token_required
def register_customer():
    """Clientes são aprovados automaticamente."""
    try:
        data = request.get_json(silent=True) or {}
        missing = _missing_fields(data, ['email', 'full_name', 'phone', 'address'])
        if missing:
            return json_error(f"Campos obrigatórios: {', '.join(missing)}", 400)

        age = data.get('age')
        if age is not None:
            try:
                age = int(age)
            except (TypeError, ValueError):
                return json_error("Idade inválida", 400)
            if age <= 0:
                return json_error("Idade inválida", 400)

        client = get_supabase()
        registration = {
            "id": request.user_id,
            "email": data['email'].strip().lower(),
            "role": "cliente",
            "status": "approved",
            "full_name": data['full_name'].strip(),
            "phone": data['phone'].strip(),
            "address": data['address'].strip(),
            "age": age,
            "documents": [],
            "created_at": utc_now_iso(),
        }
        created = first_row(client.table('user_registrations').insert(registration).execute())
        logger.info(f"✅ Cliente {request.user_id} cadastrado")
        return json_success(created or registration, 201, message="Cadastro realizado com sucesso!")

    except Exception as e:
        logger.error(f"Erro no cadastro de cliente: {e}", exc_info=True)
        return json_error("Erro ao realizar cadastro", 500)


@registration_bp.route('/company', methods=['POST'])
def register_company():
    logger.info("=== INÍCIO register_company ===")
    try:
        data = request.form
        user_id, error_response = _optional_user_id()
        if error_response:
            return error_response

        missing = _missing_fields(data, ['company_name', 'responsible_name', 'nif', 'address', 'contacts', 'email'])
        if missing:
            return json_error(f"Campos obrigatórios: {', '.join(missing)}", 400)

        plan = data.get('plan', 'basic')
        if plan not in PLANS:
            return json_error(f"Plano inválido: '{plan}'", 400)

        delivery_fee = None
        if data.get('delivery_fee'):
            try:
                delivery_fee = float(data['delivery_fee'])
            except ValueError:
                return json_error("Taxa de entrega inválida", 400)
            if not math.isfinite(delivery_fee) or delivery_fee < 0:
                return json_error("Taxa de entrega inválida", 400)

        license_file = request.files.get('commercial_license')
        publication_file = request.files.get('company_publication')
        for file_storage, label in ((license_file, "Alvará Comercial"), (publication_file, "Publicação da Empresa")):
            problem = _check_document(file_storage, label)
            if problem:
                return json_error(problem, 400)

        client = get_supabase()
        nif = data['nif'].strip()
        existing = first_row(client.table('companies').select('id').eq('nif', nif).limit(1).execute())
        if existing:
            return json_error("Já existe uma empresa cadastrada com este NIF", 409)

        commercial_license_url = upload_public_file(client, COMPANY_DOCUMENTS_BUCKET, 'commercial-licenses', license_file)
        company_publication_url = upload_public_file(client, COMPANY_DOCUMENTS_BUCKET, 'company-publications', publication_file)

        company_data = {
            "company_name": data['company_name'].strip(),
            "responsible_name": data['responsible_name'].strip(),
            "nif": nif,
            "address": data['address'].strip(),
            "contacts": data['contacts'].strip(),
            "email": data['email'].strip().lower(),
            "plan": plan,
            "delivery_fee": delivery_fee,
            "user_id": user_id,
            "commercial_license_url": commercial_license_url,
            "company_publication_url": company_publication_url,
            "status": "pending",
            "created_at": utc_now_iso(),
        }
        company = first_row(client.table('companies').insert(company_data).execute())

        # Cópia em user_registrations para o painel de aprovações
        try:
            client.table('user_registrations').insert({
                "email": company_data['email'],
                "role": "empresa",
                "status": "pending",
                "phone": company_data['contacts'],
                "company_name": company_data['company_name'],
                "responsible_name": company_data['responsible_name'],
                "nif": nif,
                "company_address": company_data['address'],
                "company_contacts": company_data['contacts'],
                "documents": [commercial_license_url, company_publication_url],
                "created_at": company_data['created_at'],
            }).execute()
        except Exception as e:
            logger.warning(f"⚠️ Empresa gravada, mas falhou a cópia em user_registrations: {e}")

        logger.info(f"✅ Empresa {company_data['company_name']} cadastrada (pendente)")
        return json_success(
            company or company_data, 201,
            message="Cadastro de empresa enviado com sucesso! Aguarde a aprovação do administrador.",
        )

    except Exception as e:
        logger.error(f"Erro no cadastro de empresa: {e}", exc_info=True)
        return json_error("Erro ao cadastrar empresa", 500)


@registration_bp.route('/courier', methods=['POST'])
def register_courier():
    logger.info("=== INÍCIO register_courier ===")
    try:
        data = request.form
        user_id, error_response = _optional_user_id()
        if error_response:
            return error_response

        missing = _missing_fields(data, ['full_name', 'phone', 'address'])
        if missing:
            return json_error(f"Campos obrigatórios: {', '.join(missing)}", 400)

        id_document = request.files.get('identification_document')
        driving_license = request.files.get('driving_license')
        vehicle_photo = request.files.get('vehicle_photo')
        for file_storage, label in ((id_document, "Documento de Identificação"), (driving_license, "Carta de Condução")):
            problem = _check_document(file_storage, label)
            if problem:
                return json_error(problem, 400)
        if vehicle_photo and vehicle_photo.filename:
            problem = _check_document(vehicle_photo, "Foto do Veículo")
            if problem:
                return json_error(problem, 400)
        else:
            vehicle_photo = None

        client = get_supabase()
        phone = data['phone'].strip()
        existing = first_row(client.table('delivery_drivers').select('id').eq('phone', phone).limit(1).execute())
        if existing:
            return json_error("Já existe um entregador cadastrado com este telefone", 409)

        id_document_url = upload_public_file(client, DELIVERY_DOCUMENTS_BUCKET, 'identification-documents', id_document)
        driving_license_url = upload_public_file(client, DELIVERY_DOCUMENTS_BUCKET, 'driving-licenses', driving_license)
        vehicle_photo_url = None
        if vehicle_photo:
            vehicle_photo_url = upload_public_file(client, DELIVERY_DOCUMENTS_BUCKET, 'vehicle-photos', vehicle_photo)

        now_iso = utc_now_iso()
        registration = first_row(client.table('user_registrations').insert({
            # email temporário baseado no telefone; o entregador não tem e-mail no formulário
            "email": f"{phone}@entregador.temp",
            "role": "entregador",
            "status": "pending",
            "phone": phone,
            "full_name": data['full_name'].strip(),
            "delivery_address": data['address'].strip(),
            "documents": [u for u in (id_document_url, driving_license_url, vehicle_photo_url) if u],
            "created_at": now_iso,
        }).execute())

        driver = first_row(client.table('delivery_drivers').insert({
            "user_id": user_id,
            "full_name": data['full_name'].strip(),
            "phone": phone,
            "address": data['address'].strip(),
            "identification_document_url": id_document_url,
            "driving_license_url": driving_license_url,
            "vehicle_photo_url": vehicle_photo_url,
            "status": "pending",
            "created_at": now_iso,
        }).execute())

        logger.info(f"✅ Entregador {phone} cadastrado (pendente)")
        return json_success(
            {"registration": registration, "driver": driver}, 201,
            message="Cadastro de entregador enviado com sucesso! Aguarde a aprovação do administrador.",
        )

    except Exception as e:
        logger.error(f"Erro no cadastro de entregador: {e}", exc_info=True)
        return json_error("Erro ao cadastrar entregador", 500)
