import logging
import os

from flask import Flask, jsonify, render_template_string, request
from flask_socketio import SocketIO

from matchmaking import Relay
from messages import Disconnect, InvalidMessage, parse_inbound

# --- CONFIGURATION ---
logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
                    format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

INBOUND_EVENTS = (
    'find-chat',
    'cancel-search',
    'offer',
    'answer',
    'ice-candidate',
    'chat-message',
    'typing',
    'end-chat',
)


def _cors_origins(value):
    if value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def default_config():
    return {
        'SECRET_KEY': os.environ.get('SECRET_KEY', 'secret!'),
        'HOST': os.environ.get('HOST', '0.0.0.0'),
        'PORT': int(os.environ.get('PORT', 3000)),
        'CORS_ALLOWED_ORIGINS': _cors_origins(os.environ.get('CORS_ALLOWED_ORIGINS', '*')),
    }


# --- SOCKET WIRING ---

def _handle_for(socketio, sid):
    """Send handle for one client: emits a named message to its session only."""
    def send(event, payload=None):
        if payload is None:
            socketio.emit(event, to=sid)
        else:
            socketio.emit(event, payload, to=sid)
    return send


def register_handlers(socketio, relay):

    @socketio.on('connect')
    def on_connect(auth=None):
        relay.connect(request.sid, _handle_for(socketio, request.sid))

    @socketio.on('disconnect')
    def on_disconnect(reason=None):
        relay.dispatch(request.sid, Disconnect())

    def bind(event):
        def on_event(data=None):
            try:
                message = parse_inbound(event, data)
            except InvalidMessage as e:
                logger.warning("Dropping malformed event from %s: %s", request.sid, e)
                return
            relay.dispatch(request.sid, message)
        return on_event

    for event in INBOUND_EVENTS:
        socketio.on_event(event, bind(event))

    @socketio.on_error_default
    def on_error(e):
        logger.exception("Socket handler failed for %s: %s", request.sid, e)


# --- APP ---

def create_app(config=None):
    app = Flask(__name__)
    app.config.update(default_config())
    if config:
        app.config.update(config)

    socketio = SocketIO(app, cors_allowed_origins=app.config['CORS_ALLOWED_ORIGINS'])
    relay = Relay()
    app.extensions['relay'] = relay
    register_handlers(socketio, relay)

    @app.route('/')
    def index():
        return render_template_string(CLIENT_PAGE)

    @app.route('/health')
    def health():
        return jsonify(status='ok', **relay.snapshot())

    return app, socketio


# --- FRONTEND TEMPLATE (HTML/CSS/JS) ---
CLIENT_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Random Meet | Talk to a stranger</title>
    <script src="https://cdn.tailwindcss.com"></script>
    <script src="https://cdnjs.cloudflare.com/ajax/libs/socket.io/4.7.5/socket.io.min.js"></script>
    <link rel="stylesheet" href="https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.4.0/css/all.min.css">
    <style>
        video.mirrored { transform: scaleX(-1); }
        video { background-color: #0f172a; }
        .screen { display: none; }
        .screen.active { display: flex; }
    </style>
</head>
<body class="bg-slate-950 text-slate-200 h-screen flex flex-col overflow-hidden">

    <header class="h-16 flex items-center justify-between px-6 border-b border-slate-800">
        <h1 class="text-lg font-bold">Random<span class="text-indigo-500">Meet</span></h1>
        <div id="status" class="text-xs font-mono text-slate-500 uppercase tracking-widest">Disconnected</div>
    </header>

    <!-- Start -->
    <section id="start-screen" class="screen active flex-1 flex-col items-center justify-center gap-4">
        <i class="fas fa-video text-5xl text-indigo-400"></i>
        <p class="text-slate-400">Meet a random stranger over video.</p>
        <button id="start-chat-btn" class="bg-indigo-600 hover:bg-indigo-500 text-white font-semibold py-3 px-6 rounded-xl">Start</button>
    </section>

    <!-- Waiting -->
    <section id="waiting-screen" class="screen flex-1 flex-col items-center justify-center gap-4">
        <div class="w-16 h-16 border-4 border-indigo-500 rounded-full border-t-transparent animate-spin"></div>
        <p class="text-white text-lg">Searching...</p>
        <button id="cancel-search-btn" class="bg-slate-800 border border-slate-700 py-2 px-4 rounded-xl">Cancel</button>
    </section>

    <!-- Chat -->
    <section id="chat-screen" class="screen flex-1 flex-col md:flex-row overflow-hidden">
        <div class="flex-1 relative bg-black/40 flex items-center justify-center p-4">
            <video id="remote-video" autoplay playsinline class="w-full h-full object-contain rounded-2xl"></video>
            <div class="absolute bottom-6 right-6 w-32 md:w-56 aspect-video rounded-xl overflow-hidden border-2 border-slate-700">
                <video id="local-video" autoplay playsinline muted class="w-full h-full object-cover mirrored"></video>
            </div>
            <div class="absolute top-4 left-4 flex gap-2">
                <button id="mute-btn" class="w-9 h-9 rounded-full bg-slate-800" title="Toggle Mic"><i class="fas fa-microphone"></i></button>
                <button id="video-btn" class="w-9 h-9 rounded-full bg-slate-800" title="Toggle Cam"><i class="fas fa-video"></i></button>
            </div>
        </div>
        <div class="w-full md:w-[380px] bg-slate-900 border-l border-slate-800 flex flex-col">
            <div id="chat-messages" class="flex-1 overflow-y-auto p-4 space-y-3"></div>
            <div id="typing-indicator" class="h-6 px-4 text-xs text-indigo-400 italic hidden">Stranger is typing...</div>
            <div class="p-4 border-t border-slate-800 space-y-3">
                <div class="flex gap-2">
                    <button id="next-btn" class="flex-1 bg-slate-100 text-slate-900 font-bold py-2 rounded-xl">Next Stranger</button>
                    <button id="end-chat-btn" class="bg-slate-800 border border-slate-700 py-2 px-4 rounded-xl"><i class="fas fa-stop"></i></button>
                </div>
                <form id="chat-form" class="flex gap-2">
                    <input id="chat-input" type="text" placeholder="Type a message..." autocomplete="off"
                        class="flex-1 bg-slate-950 text-white rounded-xl py-2 px-3 border border-slate-700 focus:outline-none">
                    <button id="send-btn" type="submit" class="bg-indigo-600 text-white px-3 rounded-xl"><i class="fas fa-paper-plane"></i></button>
                </form>
            </div>
        </div>
    </section>

    <!-- Ended -->
    <section id="end-screen" class="screen flex-1 flex-col items-center justify-center gap-4">
        <p id="end-reason" class="text-slate-300">Chat ended.</p>
        <button id="new-chat-btn" class="bg-indigo-600 hover:bg-indigo-500 text-white font-semibold py-3 px-6 rounded-xl">New chat</button>
    </section>

    <script>
        const socket = io();

        const peerConnectionConfig = {
            'iceServers': [
                {'urls': 'stun:stun.l.google.com:19302'},
                {'urls': 'stun:stun1.l.google.com:19302'}
            ]
        };

        const localVideo = document.getElementById('local-video');
        const remoteVideo = document.getElementById('remote-video');
        const chatMessages = document.getElementById('chat-messages');
        const chatInput = document.getElementById('chat-input');
        const typingIndicator = document.getElementById('typing-indicator');
        const statusEl = document.getElementById('status');

        let localStream = null;
        let peerConnection = null;
        let roomId = null;
        let pendingCandidates = [];
        let typingTimeout = null;

        function showScreen(id) {
            document.querySelectorAll('.screen').forEach(s => s.classList.remove('active'));
            document.getElementById(id).classList.add('active');
        }

        // --- 1. MEDIA ---
        async function startCamera() {
            if (!localStream) {
                localStream = await navigator.mediaDevices.getUserMedia({ video: { width: 640 }, audio: true });
                localVideo.srcObject = localStream;
            }
        }

        async function findChat() {
            try {
                await startCamera();
            } catch (err) {
                alert("Please enable camera access to use this app.");
                return;
            }
            chatMessages.innerHTML = '';
            socket.emit('find-chat');
        }

        // --- 2. NEGOTIATION ---
        function createPeerConnection() {
            peerConnection = new RTCPeerConnection(peerConnectionConfig);
            pendingCandidates = [];
            localStream.getTracks().forEach(track => peerConnection.addTrack(track, localStream));

            peerConnection.ontrack = (event) => {
                if (remoteVideo.srcObject !== event.streams[0]) {
                    remoteVideo.srcObject = event.streams[0];
                    remoteVideo.play().catch(e => console.error("Error playing video:", e));
                }
            };
            peerConnection.onicecandidate = (event) => {
                if (event.candidate && roomId) {
                    socket.emit('ice-candidate', { candidate: event.candidate, roomId: roomId });
                }
            };
        }

        async function flushCandidates() {
            const queued = pendingCandidates;
            pendingCandidates = [];
            for (const candidate of queued) {
                try { await peerConnection.addIceCandidate(candidate); }
                catch (e) { console.error("Error adding ICE candidate", e); }
            }
        }

        async function sendOffer() {
            const offer = await peerConnection.createOffer();
            await peerConnection.setLocalDescription(offer);
            socket.emit('offer', { offer: offer, roomId: roomId });
        }

        function closeConnection() {
            if (peerConnection) {
                peerConnection.close();
                peerConnection = null;
            }
            pendingCandidates = [];
            remoteVideo.srcObject = null;
            roomId = null;
            typingIndicator.classList.add('hidden');
        }

        // --- 3. SOCKET EVENTS ---
        socket.on('connect', () => { statusEl.innerText = "Connected"; });
        socket.on('disconnect', () => { statusEl.innerText = "Reconnecting..."; });

        socket.on('waiting-for-match', () => showScreen('waiting-screen'));

        socket.on('chat-matched', async (data) => {
            closeConnection();
            roomId = data.roomId;
            showScreen('chat-screen');
            addSystemMessage("Connected with a stranger. Say Hi!");
            createPeerConnection();
            if (data.role === 'offerer') {
                try { await sendOffer(); }
                catch (err) { console.error("Offer Error:", err); }
            }
        });

        socket.on('offer', async (data) => {
            if (!peerConnection) return;
            try {
                await peerConnection.setRemoteDescription(new RTCSessionDescription(data.offer));
                await flushCandidates();
                const answer = await peerConnection.createAnswer();
                await peerConnection.setLocalDescription(answer);
                socket.emit('answer', { answer: answer, roomId: roomId });
            } catch (e) { console.error("Signaling error", e); }
        });

        socket.on('answer', async (data) => {
            if (!peerConnection) return;
            try {
                await peerConnection.setRemoteDescription(new RTCSessionDescription(data.answer));
                await flushCandidates();
            } catch (e) { console.error("Signaling error", e); }
        });

        socket.on('ice-candidate', async (data) => {
            if (!peerConnection || !data.candidate) return;
            const candidate = new RTCIceCandidate(data.candidate);
            if (!peerConnection.remoteDescription) {
                pendingCandidates.push(candidate);
                return;
            }
            try { await peerConnection.addIceCandidate(candidate); }
            catch (e) { console.error("Error adding ICE candidate", e); }
        });

        socket.on('chat-message', (data) => {
            typingIndicator.classList.add('hidden');
            addChatMessage(data.message, false, data.timestamp);
        });

        socket.on('partner-typing', (data) => {
            data.isTyping ? typingIndicator.classList.remove('hidden') : typingIndicator.classList.add('hidden');
        });

        socket.on('partner-disconnected', () => endSession("Stranger has disconnected."));
        socket.on('chat-ended', () => endSession("Stranger ended the chat."));

        function endSession(reason) {
            closeConnection();
            document.getElementById('end-reason').innerText = reason;
            showScreen('end-screen');
        }

        // --- 4. INTERACTIONS ---
        document.getElementById('start-chat-btn').addEventListener('click', findChat);
        document.getElementById('new-chat-btn').addEventListener('click', findChat);

        document.getElementById('cancel-search-btn').addEventListener('click', () => {
            socket.emit('cancel-search');
            showScreen('start-screen');
        });

        document.getElementById('next-btn').addEventListener('click', () => {
            if (roomId) socket.emit('end-chat', { roomId: roomId });
            closeConnection();
            findChat();
        });

        document.getElementById('end-chat-btn').addEventListener('click', () => {
            if (roomId) socket.emit('end-chat', { roomId: roomId });
            endSession("You ended the chat.");
        });

        document.getElementById('mute-btn').addEventListener('click', (e) => {
            if (!localStream) return;
            const track = localStream.getAudioTracks()[0];
            track.enabled = !track.enabled;
            e.currentTarget.innerHTML = track.enabled ? '<i class="fas fa-microphone"></i>' : '<i class="fas fa-microphone-slash text-red-400"></i>';
        });

        document.getElementById('video-btn').addEventListener('click', (e) => {
            if (!localStream) return;
            const track = localStream.getVideoTracks()[0];
            track.enabled = !track.enabled;
            e.currentTarget.innerHTML = track.enabled ? '<i class="fas fa-video"></i>' : '<i class="fas fa-video-slash text-red-400"></i>';
        });

        document.getElementById('chat-form').addEventListener('submit', (e) => {
            e.preventDefault();
            const msg = chatInput.value.trim();
            if (msg && roomId) {
                socket.emit('chat-message', { message: msg, roomId: roomId });
                socket.emit('typing', { isTyping: false, roomId: roomId });
                addChatMessage(msg, true);
                chatInput.value = '';
            }
        });

        chatInput.addEventListener('input', () => {
            if (!roomId) return;
            socket.emit('typing', { isTyping: true, roomId: roomId });
            clearTimeout(typingTimeout);
            typingTimeout = setTimeout(() => {
                if (roomId) socket.emit('typing', { isTyping: false, roomId: roomId });
            }, 1000);
        });

        // --- UI HELPERS ---
        function addSystemMessage(text) {
            const div = document.createElement('div');
            div.className = 'text-center text-xs font-medium my-3 text-slate-500 uppercase tracking-wider';
            div.textContent = text;
            chatMessages.appendChild(div);
            chatMessages.scrollTop = chatMessages.scrollHeight;
        }

        function addChatMessage(text, isSelf, timestamp) {
            const wrapper = document.createElement('div');
            wrapper.className = `flex w-full ${isSelf ? 'justify-end' : 'justify-start'}`;
            const bubble = document.createElement('div');
            bubble.className = `max-w-[85%] px-4 py-2 text-sm rounded-2xl ${isSelf ? 'bg-indigo-600 text-white' : 'bg-slate-800 text-slate-200'}`;
            // textContent, not innerHTML: messages are untrusted
            bubble.textContent = text;
            const time = document.createElement('div');
            time.className = 'text-[10px] opacity-60 mt-1';
            time.textContent = (timestamp ? new Date(timestamp) : new Date()).toLocaleTimeString([], { hour: '2-digit', minute: '2-digit' });
            bubble.appendChild(time);
            wrapper.appendChild(bubble);
            chatMessages.appendChild(wrapper);
            chatMessages.scrollTop = chatMessages.scrollHeight;
        }
    </script>
</body>
</html>
"""

app, socketio = create_app()

if __name__ == '__main__':
    logger.info("Server running on port %s", app.config['PORT'])
    socketio.run(app, host=app.config['HOST'], port=app.config['PORT'], allow_unsafe_werkzeug=True)
