import logging
import math
import os
import tempfile

import requests
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager, create_access_token, get_jwt_identity, jwt_required

from config import Config, WinPercentages, setup_logging
from ledger import InsufficientFunds, Ledger
from slot_machine import (
    VARIANTS, RandomEntropy, SlotMachine, SlotMachineError, load_paylines, passes_win_gate,
)

logger = logging.getLogger(__name__)

MODES = WinPercentages.MODES


def _is_number(value):
    # Flask's JSON parser accepts NaN and Infinity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def create_app(overrides=None, entropy=None):
    app = Flask(__name__)
    app.config.update({k: getattr(Config, k) for k in dir(Config) if k.isupper()})
    if overrides:
        app.config.update(overrides)
    app.config['JWT_SECRET_KEY'] = app.config['JWT_SECRET']
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = app.config['JWT_EXPIRES']

    CORS(app)
    JWTManager(app)

    ledger = Ledger(free_starting_credits=app.config['FREE_STARTING_CREDITS'])
    win_percentages = WinPercentages(paid=app.config['WIN_PERCENT'], free=app.config['WIN_PERCENT_FREE'])
    machines = {variant: SlotMachine(variant) for variant in VARIANTS}
    entropy = entropy or RandomEntropy()

    app.extensions['slot_ledger'] = ledger
    app.extensions['slot_win_percentages'] = win_percentages

    @app.errorhandler(SlotMachineError)
    def handle_slot_error(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(InsufficientFunds)
    def handle_insufficient_funds(e):
        return jsonify({'error': 'Not enough credits!'}), 400

    # ---- Admin ----

    @app.route('/api/admin-login', methods=['POST'])
    @app.route('/admin/login', methods=['POST'])
    def admin_login():
        data = request.get_json(silent=True) or {}
        username = data.get('username')
        password = data.get('password')
        if (app.config['ADMIN_PASSWORD'] and username == app.config['ADMIN_USERNAME']
                and password == app.config['ADMIN_PASSWORD']):
            token = create_access_token(identity=username)
            logger.info("Admin login: %s", username)
            return jsonify({'success': True, 'token': token})
        logger.warning("Rejected admin login for %r", username)
        return jsonify({'success': False, 'error': 'Invalid credentials'}), 401

    # ---- Win percentages ----

    @app.route('/api/get-win-percentages', methods=['GET'])
    def get_win_percentages():
        return jsonify(win_percentages.to_dict())

    @app.route('/api/get-win-percentage', methods=['GET'])
    def get_win_percentage():
        return jsonify({'percentage': win_percentages.get('paid')})

    @app.route('/api/update-win-percentages', methods=['POST'])
    @jwt_required()
    def update_win_percentages():
        data = request.get_json(silent=True) or {}
        updates = {mode: data[mode] for mode in MODES if data.get(mode) is not None}
        try:
            for value in updates.values():
                WinPercentages.validate(value)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        for mode, value in updates.items():
            win_percentages.set(mode, value)
        logger.info("Win percentages updated by %s: %s", get_jwt_identity(), win_percentages.to_dict())
        return jsonify({'success': True, **win_percentages.to_dict()})

    @app.route('/api/set-win-percentage', methods=['POST'])
    @jwt_required()
    def set_win_percentage():
        data = request.get_json(silent=True) or {}
        try:
            win_percentages.set('paid', data.get('percentage'))
        except ValueError:
            return jsonify({'error': 'Invalid percentage value'}), 400
        logger.info("Paid win percentage set to %s", win_percentages.get('paid'))
        return jsonify({'success': True})

    # ---- Play ----

    @app.route('/api/spin', methods=['POST'])
    def spin():
        data = request.get_json(silent=True) or {}
        wallet = data.get('wallet')
        bet = data.get('bet')
        mode = data.get('mode', 'free')
        variant = data.get('variant', 'video')

        if not wallet or not _is_number(bet) or bet <= 0:
            return jsonify({'success': False, 'error': 'Missing wallet or bet'}), 400
        if mode not in MODES:
            return jsonify({'success': False, 'error': f'Unknown mode: {mode}'}), 400
        if variant not in VARIANTS:
            return jsonify({'success': False, 'error': f'Unknown variant: {variant}'}), 400

        credits = ledger.debit(mode, wallet, bet, status='bet')
        result = machines[variant].spin(bet, entropy)

        winnings = 0.0
        voided = False
        if result.total_multiplier > 0:
            if passes_win_gate(win_percentages.get(mode), entropy):
                winnings = result.winnings
                credits = ledger.credit(mode, wallet, winnings, status='win')
                logger.info("Win: %s wins %.2f on bet %.2f (x%s, %s)", wallet, winnings, bet,
                            result.total_multiplier, mode)
            else:
                voided = True
        if not winnings:
            logger.info("Loss: %s lost %.2f (%s)", wallet, bet, mode)

        message = f"You won {winnings:.2f}!" if winnings else "Better luck next time!"
        return jsonify({
            'success': True,
            'grid': [list(reel) for reel in result.grid],
            'total_multiplier': result.total_multiplier,
            'details': result.details,
            'voided': voided,
            'winnings': winnings,
            'credits': credits,
            'message': message,
        })

    @app.route('/api/balance', methods=['GET'])
    def balance():
        wallet = request.args.get('wallet')
        mode = request.args.get('mode', 'paid')
        if not wallet:
            return jsonify({'error': 'Missing wallet'}), 400
        if mode not in MODES:
            return jsonify({'error': f'Unknown mode: {mode}'}), 400
        return jsonify({'credits': ledger.balance(mode, wallet)})

    @app.route('/api/reset-credits', methods=['POST'])
    def reset_credits():
        data = request.get_json(silent=True) or {}
        wallet = data.get('wallet')
        if not wallet:
            return jsonify({'error': 'Missing wallet'}), 400
        return jsonify({'success': True, 'credits': ledger.reset('free', wallet)})

    @app.route('/api/get-balances', methods=['GET'])
    @jwt_required()
    def get_balances():
        mode = request.args.get('mode', 'paid')
        if mode not in MODES:
            return jsonify({'error': f'Unknown mode: {mode}'}), 400
        return jsonify(ledger.balances(mode))

    @app.route('/api/send-bonus', methods=['POST'])
    @jwt_required()
    def send_bonus():
        data = request.get_json(silent=True) or {}
        wallet = data.get('wallet')
        amount = data.get('amount')
        mode = data.get('mode', 'paid')
        if not wallet or not _is_number(amount) or amount <= 0 or mode not in MODES:
            return jsonify({'error': 'Invalid input'}), 400
        credits = ledger.credit(mode, wallet, amount, status='bonus')
        logger.info("Bonus: sent %.2f to %s (%s)", amount, wallet, mode)
        return jsonify({'success': True, 'credits': credits})

    # ---- Transactions ----

    @app.route('/api/record-transaction', methods=['POST'])
    def record_transaction():
        data = request.get_json(silent=True) or {}
        address = data.get('address')
        amount = data.get('amount')
        status = data.get('status')
        if not address or not _is_number(amount) or not status:
            return jsonify({'error': 'address, amount and status are required'}), 400
        ledger.record(address, amount, status)
        logger.info("Transaction: %s %s MET (%s)", address, amount, status)
        return jsonify({'success': True})

    @app.route('/api/transactions', methods=['GET'])
    def transactions():
        return jsonify({'transactions': [tx.to_dict() for tx in ledger.transactions()]})

    @app.route('/api/download-transactions', methods=['GET'])
    @jwt_required()
    def download_transactions():
        return Response(
            ledger.export_csv(),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=transactions.csv'},
        )

    # ---- Contact ----

    @app.route('/contact', methods=['POST'])
    @app.route('/api/contact', methods=['POST'])
    def contact():
        data = request.get_json(silent=True) or {}
        name = data.get('name')
        email = data.get('email')
        message = data.get('message')
        if not name or not email or not message:
            return jsonify({'error': 'All fields required'}), 400

        token = app.config['TELEGRAM_BOT_TOKEN']
        chat_id = app.config['TELEGRAM_CHAT_ID']
        if not token or not chat_id:
            logger.warning("Contact relay is not configured, dropping message from %s", email)
            return jsonify({'error': 'Contact relay is not configured'}), 503

        text = f"New Contact Submission:\nName: {name}\nEmail: {email}\nMessage: {message}"
        try:
            r = requests.post(f"https://api.telegram.org/bot{token}/sendMessage",
                              json={'chat_id': chat_id, 'text': text}, timeout=10)
            r.raise_for_status()
        except requests.RequestException as e:
            logger.error("Contact error: %s", e)
            return jsonify({'error': 'Failed to send message'}), 502

        logger.info("Contact: message from %s (%s)", name, email)
        return jsonify({'success': True, 'message': 'Message sent successfully!'})

    # ---- Simulation ----

    @app.route('/run_simulation', methods=['POST'])
    def run_simulation():
        data = request.get_json(silent=True) or request.form
        variant = data.get('variant', 'video')
        if variant not in VARIANTS:
            return jsonify({'error': f'Unknown variant: {variant}'}), 400
        try:
            num_spins = int(data.get('num_spins', 10000))
            total_bet = float(data.get('total_bet', 100.0))
            seed = data.get('seed')
            seed = int(seed) if seed not in (None, '') else None
        except (TypeError, ValueError, OverflowError):
            return jsonify({'error': 'num_spins, total_bet and seed must be numbers'}), 400
        if num_spins <= 0 or not math.isfinite(total_bet) or total_bet <= 0:
            return jsonify({'error': 'num_spins and total_bet must be positive'}), 400

        machine = machines[variant]
        win_lines = request.files.get('win_lines')
        if win_lines:
            if variant != 'video':
                return jsonify({'error': 'Custom win lines are only supported for the video variant'}), 400
            suffix = os.path.splitext(win_lines.filename or '')[1].lower()
            if suffix not in ('.csv', '.xlsx'):
                return jsonify({'error': 'Win lines must be a .csv or .xlsx file'}), 400
            with tempfile.TemporaryDirectory() as temp_dir:
                path = os.path.join(temp_dir, 'WinLine' + suffix)
                win_lines.save(path)
                paylines = load_paylines(path, reels=machine.num_reels)
            machine = SlotMachine('video', paylines=paylines)

        num_spins = min(num_spins, app.config['MAX_SIMULATION_SPINS'])
        return jsonify(machine.run_simulation(num_spins, total_bet=total_bet, seed=seed))

    return app


if __name__ == '__main__':
    setup_logging(Config.LOG_LEVEL, Config.LOG_FILE)
    app = create_app()
    # host='0.0.0.0' allows access from other computers in the same network
    app.run(host='0.0.0.0', port=Config.PORT)
