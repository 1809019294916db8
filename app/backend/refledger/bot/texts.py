"""
User-facing bot texts.
"""

BUTTON_INVITE = "Пригласить друзей"
BUTTON_MY_REFERRALS = "Мои рефералы"
BUTTON_CONNECT_WALLET = "Подключить TON-кошелёк"
BUTTON_CHANGE_WALLET = "Изменить кошелек"

MENU_BUTTONS = (BUTTON_INVITE, BUTTON_MY_REFERRALS, BUTTON_CONNECT_WALLET, BUTTON_CHANGE_WALLET)

MENU_PROMPT = "Выберите действие из меню:"

WELCOME = (
    "<b>⭐️ Добро пожаловать!</b>\n\n"
    "Приглашайте друзей и получайте 10% от прибыли с каждой их сделки."
)

GENERIC_ERROR = "Произошла ошибка. Попробуйте позже."
USERNAME_REQUIRED = (
    "Для использования бота необходимо установить username в настройках Telegram.\n\n"
    "После установки username отправьте команду /start снова."
)
NOT_REGISTERED = "Вы еще не зарегистрированы как рефовод. Используйте команду /start."

ALREADY_INVITED = "Вы уже привязаны к реферальной программе."
INVALID_CODE = "Неверный реферальный код."
SELF_REFERRAL = "Вы не можете использовать свою собственную реферальную ссылку."

WALLET_PROMPT = "Введите адрес вашего TON-кошелька (формат: UQ... или EQ...):"
WALLET_INVALID = (
    "Неверный формат адреса кошелька. Используйте формат: UQ... или EQ... (48 символов)\n\n"
    "Попробуйте еще раз или используйте кнопки меню."
)
WALLET_SAVED = "✅ TON-кошелёк успешно подключен:\n{wallet}"
WALLET_DETECTED = (
    "Обнаружен адрес кошелька. Используйте кнопку "
    f"'{BUTTON_CONNECT_WALLET}' для его сохранения."
)
WALLET_NOT_LINKED = "не привязан"

INVITE = (
    "<b>💸 Приглашай друзей и получай 10% от прибыли с каждого друга!</b>\n\n"
    "<b>Ваша реферальная ссылка:</b>\n\n"
    "<code>{link}</code>"
)

NEW_REFERRAL = (
    "<b>⭐️ У вас новый реферал!</b>\n\n"
    "{referral}\n\n"
    "<b>Всего рефералов:</b> {count}\n\n"
    "<b>Ваша реферальная ссылка:</b>\n\n"
    "<code>{link}</code>"
)

STATS = (
    "<b>📊 Статистика рефералов</b>\n\n"
    "<b>Количество рефералов:</b> {count}\n"
    "<b>Ожидает выплаты:</b> {pending:.2f} USDT\n"
    "<b>Выплачено:</b> {paid:.2f} USDT\n"
    "<b>Кошелёк:</b> {wallet}"
)
