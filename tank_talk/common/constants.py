"""Shared constants for audio, game and network settings."""

# Audio parameters
SAMPLE_RATE = 16000  # Hz, low rate for less data per frame
CHANNELS = 1  # Mono for voice
FRAME_SIZE = 1024  # Samples per captured block (64ms at 16kHz)
SILENCE_RMS_THRESHOLD = 0.01  # Blocks quieter than this are not sent
INT16_SCALE = 32767

# Arena
ARENA_SMALL = (800, 600)
ARENA_LARGE = (1200, 800)
ARENA_MARGIN = 20.0  # Players are kept this far from every edge

# Players
MAX_HEALTH = 100
PLAYER_SPEED = 150.0  # Units per second (client prediction)

# Combat
BULLET_SPEED = 300.0  # Units per second
BULLET_LIFETIME = 3.0  # Seconds
BULLET_DAMAGE = 10
HIT_RADIUS = 20.0
SHOOT_COOLDOWN = 0.2  # Server-enforced, seconds
CLIENT_SHOOT_COOLDOWN = 0.5  # Client-side, seconds

# Audio relay
AUDIO_RADIUS = 300.0  # Spatial audio range
AUDIO_TIMEOUT = 5.0  # Seconds without packets before audio is flagged off
INACTIVITY_TIMEOUT = 600.0  # Seconds without activity before eviction

# Tick rates
COMBAT_TICK_RATE = 60  # Hz
LIVENESS_SWEEP_INTERVAL = 2.0  # Seconds (0.5 Hz)
STATS_INTERVAL = 5.0  # Seconds (0.2 Hz)

# Network
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 65534
PING_INTERVAL = 10.0  # Stream transport keepalive
PING_TIMEOUT = 30.0
WS_HEARTBEAT = 25.0  # WebSocket ping interval
WS_IDLE_TIMEOUT = 60.0

# Client reconnection
RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 5.0
RECONNECT_MAX_ATTEMPTS = 5
