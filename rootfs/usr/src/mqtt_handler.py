"""
MQTT Handler

Manages the broker connection, topic subscriptions and the conversion of inbound
sensor messages into metric store updates.
"""

import logging
import threading
from typing import Any, Callable

import paho.mqtt.client as mqtt

from constants import DISCONNECT_GRACE_SECONDS, ConnectionState, ErrorType
from protocol import DecodeError, decode_payload
import state as state_module
from utils import BrokerAddress, parse_broker_url

logger = logging.getLogger(__name__)

# How often the operate phase re-checks the stop event
SESSION_POLL_INTERVAL = 0.25

ClientFactory = Callable[[str, str], Any]


def create_client(client_id: str, transport: str = "tcp") -> mqtt.Client:
    """Create a paho client using the version 2 callback API."""
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        transport=transport,
        protocol=mqtt.MQTTv311,
    )


class ConnectionManager(threading.Thread):
    """
    Task owning the MQTT session.

    Responsible for connecting to the broker, subscribing to the configured topics on
    every (re)connect, feeding decoded readings into the metric store and keeping the
    connection flag current. paho handles reconnects within a session with bounded
    exponential backoff; when a session ends for good the outer loop waits
    ``reconnect_delay`` and builds a fresh one.

    paho delivers every callback on its single network thread, so a disconnect is never
    reordered behind a message that arrived after it.
    """

    def __init__(
        self,
        context: state_module.AppContext,
        stopper: threading.Event,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Initialize the MQTT task.

        Args:
            context: Application context.
            stopper: Event to signal when the task should stop.
            client_factory: Callable building a client from (client_id, transport).
        """
        super().__init__(name="mqtt-connection", daemon=True)
        self.app_context = context
        self._stopper = stopper
        self._client_factory = client_factory or create_client
        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()
        self._session_ended = threading.Event()
        self._disconnected = threading.Event()
        self._pending_subscriptions: dict[int, str] = {}

    # ------------------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def _set_state(self, new_state: ConnectionState) -> bool:
        """Apply a transition. Nothing leaves SHUTTING_DOWN."""
        with self._lock:
            old_state = self._state
            if old_state is ConnectionState.SHUTTING_DOWN and new_state is not ConnectionState.SHUTTING_DOWN:
                return False
            self._state = new_state
        if old_state is not new_state:
            logger.debug(f"MQTT state {old_state} -> {new_state}")
        return True

    def stop(self) -> None:
        """Request shutdown and wake the operate phase."""
        self._stopper.set()
        self._session_ended.set()

    # ------------------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------------------

    def on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code != 0:
            logger.error(f"MQTT broker refused connection: {reason_code}")
            self._session_ended.set()
            return

        if not self._set_state(ConnectionState.CONNECTED):
            return
        self._disconnected.clear()
        self.app_context.store.set_connected(True)
        logger.info("MQTT connected")

        for topic in self.app_context.config.topics:
            self._subscribe(client, topic)

    def _subscribe(self, client, topic: str) -> None:
        try:
            result, mid = client.subscribe(topic, qos=0)
        except ValueError as e:
            self._subscription_failed(topic, e)
            return

        if result != mqtt.MQTT_ERR_SUCCESS:
            self._subscription_failed(topic, mqtt.error_string(result))
            return

        with self._lock:
            self._pending_subscriptions[mid] = topic
        logger.debug(f"Subscription requested for topic: {topic} (mid {mid})")

    def on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        with self._lock:
            topic = self._pending_subscriptions.pop(mid, f"<mid {mid}>")

        for reason_code in reason_code_list:
            if reason_code.is_failure:
                self._subscription_failed(topic, reason_code)
            else:
                logger.info(f"Subscribed to topic: {topic}")

    def _subscription_failed(self, topic: str, reason) -> None:
        logger.error(f"Failed to subscribe to topic {topic}: {reason}")
        self.app_context.store.record_error(ErrorType.SUBSCRIPTION_ERROR)

    def on_message(self, client, userdata, msg):
        store = self.app_context.store

        try:
            reading = decode_payload(msg.payload)
        except DecodeError as e:
            logger.warning(f"Failed to parse JSON payload from topic {msg.topic}: {e}")
            store.record_error(ErrorType.JSON_PARSE_ERROR)
            return

        if reading.celsius is None:
            logger.warning(f"No valid temperature in message from topic {msg.topic}: {msg.payload!r}")
            store.record_error(ErrorType.INVALID_TEMPERATURE)
            return

        store.record_temperature(msg.topic, reading.celsius)
        logger.debug(f"Updated temperature {reading.celsius:.2f} from topic {msg.topic}")

    def on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self.app_context.store.set_connected(False)
        self._disconnected.set()

        if not self._set_state(ConnectionState.DISCONNECTED):
            return

        if reason_code != 0:
            logger.error(f"MQTT connection lost: {reason_code}")
        else:
            logger.info("MQTT disconnected")

    def on_connect_fail(self, client, userdata):
        self._set_state(ConnectionState.CONNECTING)
        logger.warning("MQTT connection attempt failed, retrying with backoff")

    # ------------------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------------------

    def _setup_mqtt_client(self, address: BrokerAddress):
        config = self.app_context.config
        client = self._client_factory(config.client_id, address.transport)
        client.on_connect = self.on_connect
        client.on_disconnect = self.on_disconnect
        client.on_message = self.on_message
        client.on_subscribe = self.on_subscribe
        client.on_connect_fail = self.on_connect_fail

        if address.username is not None:
            client.username_pw_set(address.username, address.password)
        if address.transport == "websockets":
            client.ws_set_options(path=address.path)
        if address.tls:
            client.tls_set()

        client.reconnect_delay_set(min_delay=config.reconnect_delay, max_delay=config.max_reconnect_delay)
        return client

    def _run_session(self) -> None:
        """Connect and operate until the session ends or shutdown is requested."""
        config = self.app_context.config
        self._session_ended.clear()
        self._disconnected.clear()
        with self._lock:
            self._pending_subscriptions.clear()
        if not self._set_state(ConnectionState.CONNECTING):
            return

        try:
            address = parse_broker_url(config.broker_url)
            logger.debug(f"Connecting to MQTT Broker '{address.host}:{address.port}' (transport: {address.transport}, TLS: {address.tls})")
            self._client = self._setup_mqtt_client(address)
            self._client.connect_async(address.host, address.port, config.keepalive)
            self._client.loop_start()
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._teardown()
            return

        while not self._stopper.is_set():
            if self._session_ended.wait(SESSION_POLL_INTERVAL):
                break

        self._teardown()

    def _teardown(self) -> None:
        """Disconnect and stop the network loop, tolerating a broken client."""
        if self._stopper.is_set():
            self._set_state(ConnectionState.SHUTTING_DOWN)

        client, self._client = self._client, None
        if client is not None:
            try:
                client.disconnect()
                self._disconnected.wait(DISCONNECT_GRACE_SECONDS)
            except Exception as e:
                logger.warning(f"MQTT disconnect failed: {e}")
            try:
                client.loop_stop()
            except Exception as e:
                logger.warning(f"Failed to stop MQTT network loop: {e}")

        self.app_context.store.set_connected(False)
        self._set_state(ConnectionState.DISCONNECTED)
        if client is not None and self._stopper.is_set():
            logger.info("MQTT client disconnected")

    def run(self):
        reconnect_delay = self.app_context.config.reconnect_delay
        try:
            while not self._stopper.is_set():
                self._run_session()
                if self._stopper.is_set():
                    break
                logger.info("Reconnecting to MQTT broker...")
                self._stopper.wait(reconnect_delay)
        except Exception:
            logger.error("Fatal MQTT exception", exc_info=True)
        finally:
            self._set_state(ConnectionState.SHUTTING_DOWN)
            self._stopper.set()
