# medic-app/app.py

import functools
import logging

from eth_account import Account
from flask import Flask, jsonify, request, session
from werkzeug.utils import secure_filename

from config import Config
from content_store import PinataClient
from errors import AccessError, ErrorKind, Invalid
from gateway import AccessGateway
from ledger import ContractLedger, FileJournal, InMemoryLedger
from utils import connect_to_blockchain

logger = logging.getLogger(__name__)

# --- Constants ---
ALLOWED_EXTENSIONS = {'txt', 'pdf', 'png', 'jpg', 'jpeg', 'gif', 'json', 'xml', 'dcm', 'md'}

STATUS_BY_KIND = {
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.ALREADY_INITIALIZED: 409,
    ErrorKind.INVALID: 400,
    ErrorKind.UPLOAD_FAILED: 502,
    ErrorKind.LEDGER_REJECTED: 503,
}


# --- Helper Functions ---

def allowed_file(filename):
    """Checks if the file extension is allowed."""
    return '.' in filename and \
           filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def respond(value, error, status=200):
    """Turns a gateway (value, error) pair into a JSON response."""
    if error is not None:
        return jsonify(error.to_dict()), STATUS_BY_KIND[error.kind]
    return jsonify(value), status


def get_current_user_address():
    """Gets the logged-in account from the session."""
    return session.get('user_address')


def login_required(view):
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        if not get_current_user_address():
            return jsonify({"error": "Unauthenticated", "message": "Please log in first."}), 401
        return view(*args, **kwargs)
    return wrapper


def json_body():
    """The JSON object sent with the request, {} when there is none."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise Invalid("Request body must be a JSON object")
    return body


# --- Wiring ---

def build_ledger(config):
    """Returns the ledger selected by LEDGER_BACKEND."""
    if config.LEDGER_BACKEND == "memory":
        logger.info("Using in-memory ledger (state is lost on restart)")
        return InMemoryLedger()
    if config.LEDGER_BACKEND == "contract":
        w3, contract, error = connect_to_blockchain(
            config.BLOCKCHAIN_NODE_URI, config.CONTRACT_ADDRESS, config.CONTRACT_ABI
        )
        if error:
            raise RuntimeError(f"Blockchain connection failed: {error}")
        if not config.LEDGER_JOURNAL_PATH:
            raise RuntimeError("LEDGER_JOURNAL_PATH must be set in contract mode (state could not be restored on restart)")
        return ContractLedger(
            w3,
            contract,
            config.SERVER_ACCOUNT_PRIVATE_KEY,
            FileJournal(config.LEDGER_JOURNAL_PATH),
            config.TX_RECEIPT_TIMEOUT,
        )
    raise RuntimeError(f"Unknown LEDGER_BACKEND '{config.LEDGER_BACKEND}' (expected 'memory' or 'contract')")


def configured_owner(config):
    """OWNER_ADDRESS if set, otherwise the address of the server (deployer) account."""
    if config.OWNER_ADDRESS:
        return config.OWNER_ADDRESS
    if config.SERVER_ACCOUNT_PRIVATE_KEY:
        return Account.from_key(config.SERVER_ACCOUNT_PRIVATE_KEY).address
    return None


def build_gateway(config):
    content_store = PinataClient.from_config(config)
    gateway = AccessGateway.restore(
        build_ledger(config),
        content_store=content_store,
        owner_can_write_without_consent=config.OWNER_CAN_WRITE_WITHOUT_CONSENT,
    )
    owner = configured_owner(config)
    if owner is None:
        logger.warning("No OWNER_ADDRESS or SERVER_ACCOUNT_PRIVATE_KEY set: no one can authorize doctors.")
    elif gateway.authorization.get_owner() is None:
        _, error = gateway.initialize(owner)
        if error:
            raise RuntimeError(f"Could not initialize owner: {error.message}")
    return gateway


# --- App Factory ---

def create_app(config=Config, gateway=None):
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config.from_object(config)
    gateway = gateway if gateway is not None else build_gateway(config)
    app.extensions['records_gateway'] = gateway

    @app.errorhandler(AccessError)
    def handle_access_error(error):
        return respond(None, error)

    def resolve_url(content_hash):
        if gateway.content_store is None:
            return None
        return gateway.content_store.resolve(content_hash)

    # --- Session Routes ---

    @app.route('/login', methods=['POST'])
    def login():
        """Logs in with a private key (or a bare account when ALLOW_DEV_LOGIN is on)."""
        data = json_body() or request.form
        private_key = (data.get('private_key') or '').strip()

        if private_key:
            if not private_key.startswith('0x'):
                private_key = '0x' + private_key
            try:
                user_address = Account.from_key(private_key).address
            except Exception as e:
                logger.info("Rejected login with malformed key: %s", e)
                return jsonify({"error": "Invalid", "message": "Invalid private key format or length."}), 400
        elif config.ALLOW_DEV_LOGIN and (data.get('account') or '').strip():
            user_address = data.get('account').strip()
        else:
            return jsonify({"error": "Invalid", "message": "Private key is required."}), 400

        session.clear()
        session['user_address'] = user_address
        logger.info("Login for %s", user_address)
        return jsonify({"account": user_address})

    @app.route('/logout', methods=['POST'])
    def logout():
        session.clear()
        return jsonify({"message": "You have been logged out."})

    # --- Owner and Doctors ---

    @app.route('/api/status')
    @login_required
    def status():
        account = get_current_user_address()
        owner, _ = gateway.get_owner()
        is_doctor, error = gateway.is_doctor(account)
        if error:
            return respond(None, error)
        return jsonify({
            "account": account,
            "owner": owner,
            "is_owner": owner is not None and account.lower() == owner.lower(),
            "is_doctor": is_doctor,
        })

    @app.route('/api/owner')
    def get_owner():
        owner, error = gateway.get_owner()
        return respond({"owner": owner}, error)

    @app.route('/api/doctors', methods=['POST'])
    @login_required
    def authorize_doctor():
        """Authorizes the given doctor, or the caller itself when none is given."""
        account = get_current_user_address()
        doctor = json_body().get('doctor') or account
        authorized, error = gateway.authorize_doctor(account, doctor)
        return respond({"doctor": authorized}, error)

    @app.route('/api/doctors/<string:identity>')
    def is_doctor(identity):
        value, error = gateway.is_doctor(identity)
        return respond({"identity": identity, "is_doctor": value}, error)

    @app.route('/api/doctors/<string:identity>/patients')
    @login_required
    def accessible_patients(identity):
        patients, error = gateway.accessible_patients(get_current_user_address(), identity)
        return respond({"patients": patients}, error)

    # --- Patients and Consent ---

    @app.route('/api/patients', methods=['POST'])
    @login_required
    def register_patient():
        patient_id, error = gateway.register_patient(get_current_user_address(), json_body().get('patient_id'))
        return respond({"patient_id": patient_id}, error, status=201)

    @app.route('/api/patients/<string:patient_id>/consents', methods=['GET'])
    @login_required
    def consented_doctors(patient_id):
        doctors, error = gateway.consented_doctors(get_current_user_address(), patient_id)
        return respond({"doctors": doctors}, error)

    @app.route('/api/patients/<string:patient_id>/consents', methods=['POST'])
    @login_required
    def grant_consent(patient_id):
        doctor = json_body().get('doctor')
        granted, error = gateway.grant_consent(get_current_user_address(), patient_id, doctor)
        return respond({"patient_id": patient_id, "doctor": doctor, "granted": granted}, error)

    @app.route('/api/patients/<string:patient_id>/consents/<string:doctor>', methods=['DELETE'])
    @login_required
    def revoke_consent(patient_id, doctor):
        granted, error = gateway.revoke_consent(get_current_user_address(), patient_id, doctor)
        return respond({"patient_id": patient_id, "doctor": doctor, "granted": granted}, error)

    @app.route('/api/patients/<string:patient_id>/consents/<string:doctor>', methods=['GET'])
    def has_consent(patient_id, doctor):
        granted, error = gateway.has_consent(patient_id, doctor)
        return respond({"patient_id": patient_id, "doctor": doctor, "granted": granted}, error)

    # --- Records ---

    @app.route('/api/patients/<string:patient_id>/records', methods=['POST'])
    @login_required
    def add_record(patient_id):
        record_id, error = gateway.add_record(get_current_user_address(), patient_id, json_body())
        return respond({"recordID": record_id}, error, status=201)

    @app.route('/api/patients/<string:patient_id>/records', methods=['GET'])
    @login_required
    def get_patient_records(patient_id):
        records, error = gateway.get_patient_records(get_current_user_address(), patient_id)
        if error:
            return respond(None, error)
        return jsonify({"records": [record.to_dict(resolve=resolve_url) for record in records]})

    @app.route('/api/patients/<string:patient_id>/records/<int:record_id>/files', methods=['POST'])
    @login_required
    def add_files_to_record(patient_id, record_id):
        """Multipart uploads are pinned first and then linked; a JSON body links already-pinned files."""
        account = get_current_user_address()
        uploads = request.files.getlist('files') + request.files.getlist('record_file')

        if not uploads:
            count, error = gateway.add_files_to_record(account, patient_id, record_id, json_body().get('attachments') or [])
            return respond({"recordID": record_id, "attachments": count}, error)

        files = []
        for file in uploads:
            filename = secure_filename(file.filename or '')
            if not filename:
                return respond(None, Invalid('No file selected.'))
            if not allowed_file(filename):
                return respond(None, Invalid(f"File type not allowed: {filename}"))
            files.append((file.read(), filename, file.mimetype or None))

        attachments, error = gateway.upload_and_attach(account, patient_id, record_id, files)
        if error:
            return respond(None, error)
        return jsonify({
            "recordID": record_id,
            "attachments": [
                dict(item.to_dict(), url=resolve_url(item.contentHash)) for item in attachments
            ],
        })

    return app


# --- Main Execution ---
if __name__ == '__main__':
    startup_warnings = []
    if Config.LEDGER_BACKEND == "contract":
        if not Config.BLOCKCHAIN_NODE_URI: startup_warnings.append("BLOCKCHAIN_NODE_URI not set in .env.")
        if not Config.CONTRACT_ADDRESS: startup_warnings.append("CONTRACT_ADDRESS not set in .env.")
        if not Config.SERVER_ACCOUNT_PRIVATE_KEY: startup_warnings.append("SERVER_ACCOUNT_PRIVATE_KEY not set in .env (transactions will fail).")
    if not Config.PINATA_JWT and not (Config.PINATA_API_KEY and Config.PINATA_SECRET_API_KEY):
        startup_warnings.append("Pinata keys not set (file uploads will fail).")

    if startup_warnings:
        print("\n--- STARTUP WARNINGS ---")
        for warning in startup_warnings:
            print(f"- {warning}")
        print("----------------------\n")

    create_app().run(host='0.0.0.0', port=5000, debug=False)
