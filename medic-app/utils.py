# medic-app/utils.py

import logging

from web3 import Web3

logger = logging.getLogger(__name__)

GAS_LIMIT_FALLBACK = 500000  # Used when gas estimation fails
GAS_BUFFER = 1.2


# --- Blockchain Connection ---

def connect_to_blockchain(node_uri, contract_address, contract_abi):
    """
    Connects to the blockchain node and builds the contract object.

    Returns:
        tuple: (w3, contract, error). On failure w3/contract are None and error
               is a string describing what went wrong.
    """
    logger.info("Attempting to connect to blockchain at %s...", node_uri)
    if not node_uri:
        return None, None, "BLOCKCHAIN_NODE_URI is not configured"
    if not contract_address:
        return None, None, "CONTRACT_ADDRESS is not configured. Deploy the contract first."
    if not contract_abi:
        return None, None, "CONTRACT_ABI not loaded (check CONTRACT_ABI_PATH)"

    w3 = Web3(Web3.HTTPProvider(node_uri))
    if not w3.is_connected():
        return None, None, f"Failed to connect to blockchain node at {node_uri}"

    try:
        checksum_address = Web3.to_checksum_address(contract_address)
    except ValueError as e:
        return None, None, f"Invalid CONTRACT_ADDRESS format '{contract_address}': {e}"

    # Named tuples, so struct fields read back by name (record.recordID)
    contract = w3.eth.contract(address=checksum_address, abi=contract_abi, decode_tuples=True)
    logger.info("Connected to chain %s, contract instance created for %s", w3.eth.chain_id, checksum_address)
    return w3, contract, None


# --- Transaction Sending ---

def send_transaction(w3, function_call, private_key, timeout=180):
    """
    Signs and sends a transaction for the given contract function call.

    Returns:
        tuple: (receipt, error). receipt is the mined receipt when the transaction
               succeeded; otherwise receipt is None and error says why.
    """
    if w3 is None:
        return None, "Web3 not connected"
    if not private_key:
        return None, "No signing key configured"

    try:
        account = w3.eth.account.from_key(private_key)
    except ValueError as e:
        return None, f"Invalid private key format: {e}"

    sender = account.address
    try:
        tx_params = {
            "from": sender,
            "nonce": w3.eth.get_transaction_count(sender),
            "gasPrice": w3.eth.gas_price,
        }

        try:
            gas_estimate = function_call.estimate_gas({"from": sender})
            tx_params["gas"] = int(gas_estimate * GAS_BUFFER)
        except Exception as e:
            # A revert during estimation means the contract would reject the call as well
            if "execution reverted" in str(e):
                return None, f"Contract rejected the call: {e}"
            logger.warning("Could not estimate gas: %s. Using default limit: %d", e, GAS_LIMIT_FALLBACK)
            tx_params["gas"] = GAS_LIMIT_FALLBACK

        transaction = function_call.build_transaction(tx_params)
        signed_tx = w3.eth.account.sign_transaction(transaction, private_key)
        tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        logger.info("Transaction sent! Hash: %s", w3.to_hex(tx_hash))
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    except ValueError as ve:
        # Nonce, gas price and balance problems come back from the node as ValueError
        message = str(ve)
        if "insufficient funds" in message:
            return None, f"Insufficient funds in account {sender}"
        if "nonce too low" in message or "replacement transaction underpriced" in message:
            return None, f"Nonce or gas price issue for account {sender}: {message}"
        return None, f"Transaction error: {message}"
    except Exception as e:
        logger.exception("Unexpected error sending transaction from %s", sender)
        return None, f"Unexpected error sending transaction: {e}"

    if receipt.status == 0:
        logger.warning("Transaction failed! Tx Hash: %s", w3.to_hex(tx_hash))
        return None, "Transaction failed or reverted"

    logger.info("Transaction confirmed! Block: %s, Gas Used: %s", receipt.blockNumber, receipt.gasUsed)
    return receipt, None
