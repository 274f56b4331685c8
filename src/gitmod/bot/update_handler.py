"""
Routing of inbound Telegram updates.

Each update reads the moderation document through the cache, then either
runs a command, resolves a button press, or applies automatic defenses
(blocklist, new-member verification, banned words, spam classifier).
Commands that change the document go through the mutation engine; nothing
here writes to the store directly.
"""

from __future__ import annotations

import html
import json
import time
from typing import Any, Awaitable, Callable, Dict, Tuple

from gitmod.ai.spam_classifier import SpamClassifier
from gitmod.cache.config_cache import ConfigCacheProtocol
from gitmod.datatypes.config_datatypes import ConfigDocument, GiveawayDraft, JoinRequest
from gitmod.datatypes.mutation_datatypes import MutationAction, MutationOutcome, MutationResult
from gitmod.moderation.giveaway_draw import EmptyGiveawayError, draw_winner, new_giveaway_id, select_giveaway
from gitmod.moderation.mutation_engine import ConfigMutationEngine, ConfigStoreProtocol
from gitmod.store.errors import ConfigNotFound, ConfigStoreError
from gitmod.telegram.bot_api import TelegramAPIError, TelegramDispatcher, inline_button
from gitmod.verification.verification_registry import VERIFY_CALLBACK_PREFIX, VerificationRegistry
from gitmod.util.logger import get_logger

logger = get_logger("update_handler")

JOIN_CALLBACK_PREFIX = "join_lot|"

ADMIN_COMMANDS = frozenset({
    "/addword", "/delword", "/block", "/unblock", "/sb",
    "/ban", "/unban", "/kick", "/warn",
    "/create", "/draw", "/listlottery", "/deletelottery",
})

PUBLIC_COMMANDS = frozenset({"/id", "/json", "/show", "/alladmin"})

# Longest message dump /json will post.
JSON_DUMP_LIMIT = 3000

# Giveaway commands skip the "syncing" notice.
SILENT_ACTIONS = (MutationAction.CREATE_GIVEAWAY, MutationAction.DELETE_GIVEAWAY, MutationAction.JOIN_GIVEAWAY)

FAILURE_MESSAGES = {
    MutationOutcome.CONFLICT: "❌ The config changed while saving. Please run the command again.",
    MutationOutcome.TRANSPORT_ERROR: "❌ GitHub write failed.",
    MutationOutcome.CORRUPT: "❌ The stored config is corrupt, fix config.json on GitHub first.",
}


def parse_command(text: str) -> Tuple[str, str]:
    """Split ``/cmd@bot args`` into ``("/cmd", "args")``. Non-commands return ``("", text)``."""
    if not text or not text.startswith("/"):
        return "", text or ""
    head, _, rest = text.partition(" ")
    return head.split("@", 1)[0].lower(), rest.strip()


def mention(user_id: int, name: str | None = None) -> str:
    return f'<a href="tg://user?id={user_id}">{html.escape(name or str(user_id))}</a>'


def describe_result(result: MutationResult, subject: Any) -> str:
    """User-facing text for a mutation outcome."""
    if not result.succeeded:
        return FAILURE_MESSAGES[result.outcome]

    subject_text = html.escape(str(subject))
    action, outcome = result.action, result.outcome
    if action is MutationAction.ADD_WORD:
        return f"✅ Banned word added: <b>{subject_text}</b>" if outcome is MutationOutcome.ADDED else "⚠️ Already banned."
    if action is MutationAction.DELETE_WORD:
        return f"🗑️ Banned word removed: <b>{subject_text}</b>" if outcome is MutationOutcome.REMOVED else "⚠️ That word is not banned."
    if action is MutationAction.BLOCK_USER:
        return f"🚫 Blocked ID: {subject_text}" if outcome is MutationOutcome.ADDED else "⚠️ Already blocked."
    if action is MutationAction.UNBLOCK_USER:
        return f"✅ Unblocked ID: {subject_text}" if outcome is MutationOutcome.REMOVED else "⚠️ That ID is not blocked."
    if action is MutationAction.DELETE_GIVEAWAY:
        return "🗑️ Giveaway deleted." if outcome is MutationOutcome.REMOVED else "⚠️ No giveaway with that ID."
    return f"✅ {outcome}"


class UpdateHandler:
    """
    Entry point for every Telegram update.

    Args:
        store: Remote config store; the cache loads through its ``read``.
        cache: Config cache shared by every update in this process.
        engine: The mutation engine (only write path).
        registry: Pending verification registry.
        dispatcher: Telegram API client.
        classifier: Optional spam classifier.
        bad_word_mute_seconds: Mute length after a banned word.
    """

    def __init__(
        self,
        store: ConfigStoreProtocol,
        cache: ConfigCacheProtocol,
        engine: ConfigMutationEngine,
        registry: VerificationRegistry,
        dispatcher: TelegramDispatcher,
        classifier: SpamClassifier | None = None,
        *,
        bad_word_mute_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cache = cache
        self.engine = engine
        self.registry = registry
        self.dispatcher = dispatcher
        self.classifier = classifier
        self.bad_word_mute_seconds = bad_word_mute_seconds
        self._clock = clock

        self._commands: Dict[str, Callable[[Dict[str, Any], str, ConfigDocument], Awaitable[None]]] = {
            "/addword": self._cmd_addword,
            "/delword": self._cmd_delword,
            "/block": self._cmd_block,
            "/sb": self._cmd_sb,
            "/unblock": self._cmd_unblock,
            "/ban": self._cmd_ban,
            "/unban": self._cmd_unban,
            "/kick": self._cmd_kick,
            "/warn": self._cmd_warn,
            "/create": self._cmd_create,
            "/listlottery": self._cmd_listlottery,
            "/draw": self._cmd_draw,
            "/deletelottery": self._cmd_deletelottery,
        }
        self._public_commands: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "/id": self._cmd_id,
            "/json": self._cmd_json,
            "/show": self._cmd_show,
            "/alladmin": self._cmd_alladmin,
        }

    async def _fetch_document(self) -> ConfigDocument:
        document, _ = await self.store.read()
        return document

    async def load_config(self) -> ConfigDocument:
        return await self.cache.get(self._fetch_document)

    async def handle(self, update: Dict[str, Any]) -> None:
        """Process one update. Errors are logged so one bad update never stops the bot."""
        try:
            config = await self.load_config()
            if "message" in update:
                await self.handle_message(update["message"], config)
            elif "callback_query" in update:
                await self.handle_callback(update["callback_query"])
        except TelegramAPIError as exc:
            logger.warning("[UPDATE] Telegram call failed for update %s: %s", update.get("update_id"), exc)
        except Exception:
            logger.exception("[UPDATE] Unhandled error for update %s", update.get("update_id"))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def handle_message(self, message: Dict[str, Any], config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        sender = message.get("from") or {}
        user_id = sender.get("id")
        text = message.get("text") or ""

        command, args = parse_command(text)
        if command in PUBLIC_COMMANDS:
            await self._public_commands[command](message)
            return
        if command in ADMIN_COMMANDS and user_id is not None and await self.dispatcher.is_admin(chat_id, user_id):
            await self._commands[command](message, args, config)
            return

        if user_id is not None and config.is_blocked(user_id):
            await self._attempt("delete blocked user's message", self.dispatcher.delete_event(chat_id, message["message_id"]))
            await self._attempt("remove blocked user", self.dispatcher.remove(chat_id, user_id))
            logger.info("[DEFENSE] Removed blocked user %s from %s", user_id, chat_id)
            return

        if message.get("new_chat_members"):
            for member in message["new_chat_members"]:
                if member.get("is_bot"):
                    continue
                try:
                    await self.registry.start(chat_id, member["id"], member.get("first_name", ""))
                except Exception:
                    logger.exception("[DEFENSE] Could not start verification for %s in %s", member["id"], chat_id)
            await self._attempt("delete join message", self.dispatcher.delete_event(chat_id, message["message_id"]))
            return

        if not text or user_id is None:
            return

        hit = config.find_bad_word(text)
        if hit is not None:
            await self._punish(message, f"🚫 <b>Banned word</b>\nDetected \"<code>{html.escape(hit)}</code>\", user muted.")
            logger.info("[DEFENSE] Banned word %r from user %s in %s", hit, user_id, chat_id)
            return

        if self.classifier is not None and self.classifier.should_check(text) and await self.classifier.is_spam(text):
            await self._punish(message, "🤖 <b>Spam filter</b>\nAdvertising or scam detected, user muted.")
            logger.info("[DEFENSE] Spam from user %s in %s", user_id, chat_id)

    async def _punish(self, message: Dict[str, Any], notice: str) -> None:
        chat_id = message["chat"]["id"]
        await self._attempt("delete offending message", self.dispatcher.delete_event(chat_id, message["message_id"]))
        until = int(self._clock()) + self.bad_word_mute_seconds
        await self._attempt(
            "mute offender",
            self.dispatcher.restrict(chat_id, message["from"]["id"], allow_posting=False, until=until),
        )
        await self._attempt("send defense notice", self.dispatcher.notify(chat_id, notice))

    async def _attempt(self, what: str, call: Awaitable[Any]) -> bool:
        """Await one Telegram call, logging a failure instead of raising it."""
        try:
            await call
        except TelegramAPIError as exc:
            logger.warning("[DEFENSE] Could not %s: %s", what, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Callback queries
    # ------------------------------------------------------------------

    async def handle_callback(self, query: Dict[str, Any]) -> None:
        data = query.get("data") or ""
        user_id = query["from"]["id"]
        message = query.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")

        if data.startswith(VERIFY_CALLBACK_PREFIX):
            try:
                target_id = int(data[len(VERIFY_CALLBACK_PREFIX):])
            except ValueError:
                await self.dispatcher.answer_interaction(query["id"], "Invalid button.", True)
                return
            await self.registry.verify(chat_id, target_id, user_id, query["id"], message.get("message_id"))
            return

        if data.startswith(JOIN_CALLBACK_PREFIX):
            giveaway_id = data[len(JOIN_CALLBACK_PREFIX):]
            result = await self.engine.mutate(MutationAction.JOIN_GIVEAWAY, JoinRequest(giveaway_id, user_id))
            replies = {
                MutationOutcome.JOINED: "✅ You have joined!",
                MutationOutcome.ALREADY_EXISTS: "⚠️ You have already joined!",
                MutationOutcome.NOT_FOUND: "❌ This giveaway has ended.",
            }
            await self.dispatcher.answer_interaction(query["id"], replies.get(result.outcome, "❌ Busy, please retry."), True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def run_mutation(self, chat_id: int, action: MutationAction, payload: Any, subject: Any = None) -> MutationResult:
        """Run a mutation and tell the chat how it went."""
        if action not in SILENT_ACTIONS:
            await self.dispatcher.notify(chat_id, "⏳ Syncing…")
        result = await self.engine.mutate(action, payload, chat_id=chat_id)
        if action is not MutationAction.CREATE_GIVEAWAY or not result.succeeded:
            await self.dispatcher.notify(chat_id, describe_result(result, payload if subject is None else subject))
        return result

    @staticmethod
    def _reply_target(message: Dict[str, Any]) -> Dict[str, Any] | None:
        reply = message.get("reply_to_message")
        return (reply or {}).get("from")

    async def _cmd_id(self, message: Dict[str, Any]) -> None:
        chat_id = message["chat"]["id"]
        info = f"👤 <b>Your ID:</b> <code>{message['from']['id']}</code>\n📍 <b>Chat ID:</b> <code>{chat_id}</code>"
        target = self._reply_target(message)
        if target:
            info += f"\n👉 <b>Their ID:</b> <code>{target['id']}</code>"
        await self.dispatcher.notify(chat_id, info)

    async def _cmd_json(self, message: Dict[str, Any]) -> None:
        target = message.get("reply_to_message") or message
        dump = json.dumps(target, ensure_ascii=False, indent=2)
        if len(dump) > JSON_DUMP_LIMIT:
            dump = dump[:JSON_DUMP_LIMIT] + "..."
        await self.dispatcher.notify(
            message["chat"]["id"], f'<pre><code class="language-json">{html.escape(dump)}</code></pre>'
        )

    async def _cmd_show(self, message: Dict[str, Any]) -> None:
        target = self._reply_target(message) or message["from"]
        full_name = " ".join(part for part in (target.get("first_name"), target.get("last_name")) if part)
        username = target.get("username")
        card = (
            "👤 <b>User info</b>\n"
            f"🆔 <b>ID:</b> <code>{target['id']}</code>\n"
            f"👤 <b>Name:</b> {html.escape(full_name)}\n"
            f"🔗 <b>Username:</b> {html.escape('@' + username) if username else 'none'}\n"
            f"🤖 <b>Bot:</b> {'yes' if target.get('is_bot') else 'no'}"
        )
        await self.dispatcher.notify(message["chat"]["id"], card)

    async def _cmd_alladmin(self, message: Dict[str, Any]) -> None:
        """Mention every human administrator of the chat."""
        chat_id = message["chat"]["id"]
        try:
            admins = await self.dispatcher.get_administrators(chat_id)
        except TelegramAPIError as exc:
            logger.warning("[COMMAND] Could not list administrators of %s: %s", chat_id, exc)
            return
        humans = [admin["user"] for admin in admins if not admin.get("user", {}).get("is_bot", True)]
        mentions = " ".join(mention(user["id"], "@" + user.get("first_name", str(user["id"]))) for user in humans)
        await self.dispatcher.notify(chat_id, f"📢 <b>Calling the admins:</b>\n{mentions or 'No human admins.'}")

    async def _word_command(self, message: Dict[str, Any], args: str, action: MutationAction, usage: str) -> None:
        chat_id = message["chat"]["id"]
        word = args or ((message.get("reply_to_message") or {}).get("text") or "").strip()
        if not word:
            await self.dispatcher.notify(chat_id, usage)
            return
        await self.run_mutation(chat_id, action, word)

    async def _cmd_addword(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        await self._word_command(message, args, MutationAction.ADD_WORD, "⚠️ Usage: /addword &lt;word&gt; or reply to a message")

    async def _cmd_delword(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        await self._word_command(message, args, MutationAction.DELETE_WORD, "⚠️ Usage: /delword &lt;word&gt;")

    async def _cmd_block(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> MutationResult | None:
        chat_id = message["chat"]["id"]
        target = self._reply_target(message)
        if not target:
            await self.dispatcher.notify(chat_id, "⚠️ Reply to the user you want to block.")
            return None
        return await self.run_mutation(chat_id, MutationAction.BLOCK_USER, target["id"])

    async def _cmd_sb(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        result = await self._cmd_block(message, args, config)
        if result is not None and result.succeeded:
            target = self._reply_target(message)
            await self.dispatcher.notify(
                message["chat"]["id"],
                f"🤡 {mention(target['id'], target.get('first_name'))} has been permanently blocked.",
            )

    async def _cmd_unblock(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        try:
            target_id = int(args)
        except ValueError:
            await self.dispatcher.notify(chat_id, "⚠️ Usage: /unblock &lt;numeric id&gt;")
            return
        await self.run_mutation(chat_id, MutationAction.UNBLOCK_USER, target_id)

    async def _enforce(self, message: Dict[str, Any], action: Callable[[int, int], Awaitable[None]], verb: str) -> None:
        chat_id = message["chat"]["id"]
        target = self._reply_target(message)
        if not target:
            await self.dispatcher.notify(chat_id, "⚠️ Reply to the user's message.")
            return
        await action(chat_id, target["id"])
        await self.dispatcher.notify(chat_id, f"User {mention(target['id'], target.get('first_name'))} {verb}.")

    async def _cmd_ban(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        await self._enforce(message, lambda c, u: self.dispatcher.restrict(c, u, allow_posting=False), "has been muted")

    async def _cmd_unban(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        await self._enforce(message, lambda c, u: self.dispatcher.restrict(c, u, allow_posting=True), "has been unmuted")

    async def _cmd_kick(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        await self._enforce(message, self.dispatcher.remove, "has been removed")

    async def _cmd_warn(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        target = self._reply_target(message)
        if not target:
            await self.dispatcher.notify(chat_id, "⚠️ Reply to the user's message.")
            return
        await self.dispatcher.notify(
            chat_id, f"⚠️ <b>Warning</b>\n{mention(target['id'], target.get('first_name'))}, mind your behaviour!"
        )

    async def _cmd_create(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        if not args:
            await self.dispatcher.notify(chat_id, "⚠️ Usage: /create &lt;prize&gt;")
            return
        draft = GiveawayDraft(id=new_giveaway_id(self._clock), prize=args, creator=message["from"]["id"])
        result = await self.run_mutation(chat_id, MutationAction.CREATE_GIVEAWAY, draft)
        if result.succeeded:
            await self.dispatcher.notify(
                chat_id,
                f"🎁 <b>New giveaway!</b>\nPrize: <b>{html.escape(draft.prize)}</b>\nPress the button to join!",
                "HTML",
                inline_button("🎉 Join", f"{JOIN_CALLBACK_PREFIX}{draft.id}"),
            )

    async def _cmd_listlottery(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        if not config.lotteries:
            await self.dispatcher.notify(chat_id, "📭 No giveaways running.")
            return
        lines = ["🎁 <b>Current giveaways:</b>"]
        for index, giveaway in enumerate(config.lotteries, start=1):
            lines.append(
                f"{index}. <b>{html.escape(giveaway.prize)}</b> (ID: <code>{giveaway.id}</code>) - "
                f"{len(giveaway.participants)} joined"
            )
        await self.dispatcher.notify(chat_id, "\n".join(lines))

    async def _cmd_draw(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        try:
            document, _ = await self.store.read()
        except ConfigNotFound:
            document = ConfigDocument.empty()
        except ConfigStoreError as exc:
            logger.warning("[GIVEAWAY] Fresh read for draw failed, using cached config: %s", exc)
            document = config

        giveaway = select_giveaway(document, args or None)
        if giveaway is None:
            await self.dispatcher.notify(chat_id, "⚠️ Please give the giveaway ID: /draw &lt;id&gt;")
            return
        try:
            winner_id = draw_winner(giveaway)
        except EmptyGiveawayError:
            await self.dispatcher.notify(chat_id, "😅 Nobody has joined yet!")
            return

        await self.dispatcher.notify(
            chat_id,
            f"🎉 <b>Winner drawn!</b>\n🎁 Prize: {html.escape(giveaway.prize)}\n💎 Winner: {mention(winner_id)}",
        )
        await self.run_mutation(chat_id, MutationAction.DELETE_GIVEAWAY, giveaway.id)

    async def _cmd_deletelottery(self, message: Dict[str, Any], args: str, config: ConfigDocument) -> None:
        chat_id = message["chat"]["id"]
        if not args:
            await self.dispatcher.notify(chat_id, "⚠️ Usage: /deletelottery &lt;id&gt;")
            return
        await self.run_mutation(chat_id, MutationAction.DELETE_GIVEAWAY, args)
