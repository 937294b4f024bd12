import json
import signal
import socket
import subprocess
from typing import Dict, List

from bastion_ssm.config import AWS_CLI, LOOPBACK_ADDRESS, PORT_FORWARD_DOCUMENT, ForwardingParameters
from bastion_ssm.credentials import AwsContext
from bastion_ssm.logger import LoggerDefinition

logger = LoggerDefinition.logger()

INTERRUPTED_EXIT_CODE = 130
STOP_TIMEOUT = 10

def session_command(instance_id: str, context: AwsContext) -> List[str]:
    return [AWS_CLI, "ssm", "start-session", "--target", instance_id] + context.cli_args()

def port_forwarding_command(instance_id: str, forwarding: ForwardingParameters, context: AwsContext) -> List[str]:
    parameters = json.dumps({
        "host": [forwarding.remote_host],
        "portNumber": [str(forwarding.remote_port)],
        "localPortNumber": [str(forwarding.local_port)],
    })
    return [
        AWS_CLI, "ssm", "start-session",
        "--target", instance_id,
        "--document-name", PORT_FORWARD_DOCUMENT,
        "--parameters", parameters,
    ] + context.cli_args()

def ssm_agent_conn(command: List[str], env: Dict[str, str]) -> int:
    # SIGTERM is turned into KeyboardInterrupt so both signals stop the child the same way
    previous_handler = signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        process = subprocess.Popen(command, env=env)
        try:
            return process.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, closing the session")
            stop_process(process)
            return INTERRUPTED_EXIT_CODE
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)

def ssm_agent_background(command: List[str], env: Dict[str, str]) -> int:
    process = subprocess.Popen(command, env=env, stdin=subprocess.DEVNULL, start_new_session=True)
    return process.pid

def stop_process(process: subprocess.Popen):
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=STOP_TIMEOUT)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()

def is_local_port_in_use(port: int, host: str = LOOPBACK_ADDRESS) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
        except OSError:
            return True
    return False
