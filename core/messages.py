"""
core/messages.py -- English text for every stable failure / error code.

Credential mismatches all map to deliberately generic wording so a response
never reveals whether the identifier exists.
"""

from __future__ import annotations

MESSAGES: dict[str, str] = {
    # Authentication results
    "badAttempt": "Unable to log you in. Please check your credentials.",
    "noPassword": "Cannot validate a user without a password.",
    "bannedUser": "Can not log you in as you are currently banned.",
    "noToken": "Every request must have a bearer token in the {header} header.",
    "badToken": "The access token is invalid.",
    "oldToken": "The access token has expired.",
    "expiredToken": "The access token is past its expiry date.",
    "unknownAuthenticator": "{alias} is not a valid authenticator.",
    "malformedPermission": "{permission} is not a valid scope.action permission.",
    "invalidUser": "Unable to locate the specified user.",
    "noUserEntity": "User entity must be provided for password validation.",
    "invalidJwt": "The token is invalid.",
    "expiredJwt": "The token has expired.",
    "beforeValidJwt": "The token is not yet available.",
    "invalidRemember": "The remember-me token is invalid or has already been used.",
    "notActivated": "This user is not activated yet.",
    "forcePasswordReset": "You must reset your password before continuing.",
    # Magic link
    "magicTokenNotFound": "Unable to verify the link.",
    "magicLinkExpired": "Sorry, link has expired.",
    "magicLinkDisabled": "Use of magic links is currently not allowed.",
    "invalidEmail": "Unable to verify the email address matches the email on record.",
    "registerDisabled": "Registration is not currently allowed.",
    "userExists": "That username or email address is already registered.",
    "alreadyLoggedIn": "You are already logged in. Log out before starting a new session.",
    "magicLinkSubject": "Your login link",
    # Actions
    "invalid2FAToken": "The code was incorrect.",
    "invalidActivateToken": "The code was incorrect.",
    "noPendingAction": "There is no pending action for this session.",
    "needVerification": "Check your email to complete account activation.",
    "need2FA": "Check your email for a verification code.",
    # Passwords
    "errorPasswordLength": "Passwords must be at least {min} characters long.",
    "suggestPasswordLength": "Pass phrases - up to 255 characters long - make more secure passwords that are easy to remember.",
    "errorPasswordCommon": "Password must not be a common password.",
    "suggestPasswordCommon": "The password was checked against over 65k commonly used passwords or passwords that have been leaked through hacks.",
    "errorPasswordPersonal": "Passwords cannot contain re-hashed personal information.",
    "suggestPasswordPersonal": "Variations on your email address or username should not be used for passwords.",
    "errorPasswordTooSimilar": "Password is too similar to the username.",
    "suggestPasswordTooSimilar": "Do not use parts of your username in your password.",
    "errorPasswordPwned": "This password has been exposed due to a data breach and has been seen {hits} times in {count} of compromised passwords.",
    "suggestPasswordPwned": "This password should never be used as a password. If you are using it anywhere change it immediately.",
    "errorPasswordEmpty": "A Password is required.",
    "errorPasswordTooLongBytes": "Password cannot exceed {max} bytes in length.",
    # Authorization
    "unknownGroup": "{group} is not a valid group.",
    "unknownPermission": "{permission} is not a valid permission.",
    "notEnoughPrivilege": "You do not have the necessary permission to perform the desired operation.",
}


def message(code: str, **params: object) -> str:
    """Return the text for code, formatted with params. Unknown codes echo back."""
    template = MESSAGES.get(code, code)
    return template.format(**params) if params else template
